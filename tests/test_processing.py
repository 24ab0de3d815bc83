import math

import numpy as np
import pytest

from sf40 import processing


def test_counts_to_volts():
    assert processing.counts_to_volts(0) == 0.0
    assert processing.counts_to_volts(4095) == pytest.approx(2.048 * 5.7)
    assert processing.counts_to_volts(4209) == pytest.approx(12.0, abs=0.01)


def test_simple_conversions():
    assert processing.raw_to_celsius(2350) == pytest.approx(23.5)
    assert processing.millivolts_to_volts(12000) == pytest.approx(12.0)
    assert processing.tenths_to_degrees(-15) == pytest.approx(-1.5)
    assert processing.cm_to_m(250) == pytest.approx(2.5)


def test_point_angles():
    assert processing.point_angles(4).tolist() == [0.0, 90.0, 180.0, 270.0]
    assert processing.point_angles(4, forward_offset=90).tolist() == [90.0, 180.0, 270.0, 0.0]
    assert processing.point_angles(4, start=2, count=1).tolist() == [180.0]
    assert len(processing.point_angles(0)) == 0


def test_polar_to_xy():
    xy = processing.polar_to_xy(np.array([0.0, 90.0, 180.0]), np.array([100, 200, -1]))
    assert xy.shape == (3, 2)
    assert xy[0] == pytest.approx([1.0, 0.0])
    assert xy[1] == pytest.approx([0.0, 2.0], abs=1e-9)
    assert math.isnan(xy[2][0]) and math.isnan(xy[2][1])
