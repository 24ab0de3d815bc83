"""Unit conversion helpers for SF40 readings.

Keep pure functions here for easy testing and reuse.
"""

from __future__ import annotations

import numpy as np

ADC_FULL_SCALE = 4095.0
ADC_REFERENCE_V = 2.048
VOLTAGE_DIVIDER = 5.7


def counts_to_volts(counts: int) -> float:
    """Incoming-voltage ADC counts to volts."""
    return (counts / ADC_FULL_SCALE) * ADC_REFERENCE_V * VOLTAGE_DIVIDER


def raw_to_celsius(raw: int) -> float:
    """Temperature register (hundredths of a degree) to degrees Celsius."""
    return raw / 100.0


def millivolts_to_volts(mv: int) -> float:
    return mv / 1000.0


def tenths_to_degrees(tenths: int) -> float:
    return tenths / 10.0


def cm_to_m(cm: float) -> float:
    return cm / 100.0


def point_angles(point_total: int, forward_offset: int = 0, start: int = 0, count: int = None) -> np.ndarray:
    """Angles in degrees [0, 360) for point indices of one revolution.

    Points are evenly spaced over the revolution; the forward offset rotates
    the zero direction.
    """
    if point_total <= 0:
        return np.zeros(0)
    if count is None:
        count = point_total - start
    idx = np.arange(start, start + count, dtype=np.float64)
    return np.mod(idx * (360.0 / point_total) + forward_offset, 360.0)


def polar_to_xy(angles_deg: np.ndarray, distances_cm: np.ndarray) -> np.ndarray:
    """Convert polar samples to an (N, 2) array of x/y in metres.

    Negative distances are invalid readings and come out as NaN.
    """
    r = np.asarray(distances_cm, dtype=np.float64) / 100.0
    r = np.where(r < 0, np.nan, r)
    theta = np.radians(np.asarray(angles_deg, dtype=np.float64))
    return np.column_stack((r * np.cos(theta), r * np.sin(theta)))
