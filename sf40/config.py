"""Runtime settings for SF40 sessions.

Settings come from environment variables (SF40_*) and can be overridden by
CLI flags. Values are parsed with clamping validators so a bad environment
never produces an unusable session.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from .protocol import DEFAULT_TIMEOUT, POLL_INTERVAL
from .transport import DEFAULT_BAUDRATE, DEFAULT_PORT

logger = logging.getLogger(__name__)


def safe_int(value: Any, field: str, min_value: Optional[int] = None, max_value: Optional[int] = None, default: Optional[int] = None) -> int:
    """Parse and validate integer with optional bounds.

    Args:
        value: Value to parse
        field: Field name for error messages
        min_value: Minimum allowed value (clamps if exceeded)
        max_value: Maximum allowed value (clamps if exceeded)
        default: Default value if None (raises if not provided)

    Returns:
        Validated integer

    Raises:
        ValueError: If value cannot be parsed and no default provided
    """
    if value is None:
        if default is not None:
            return default
        raise ValueError(f"{field} is required")

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc

    if min_value is not None and parsed < min_value:
        parsed = min_value
    if max_value is not None and parsed > max_value:
        parsed = max_value
    return parsed


def safe_float(value: Any, field: str, min_value: Optional[float] = None, max_value: Optional[float] = None, default: Optional[float] = None) -> float:
    """Parse and validate float with optional bounds (clamping, like safe_int)."""
    if value is None:
        if default is not None:
            return default
        raise ValueError(f"{field} is required")

    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be a number") from exc

    if min_value is not None and parsed < min_value:
        parsed = min_value
    if max_value is not None and parsed > max_value:
        parsed = max_value
    return parsed


def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse bool-like values from environment strings or flags."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def parse_log_level(value: Any, default: str = "INFO") -> str:
    """Logging level name; unknown names fall back to `default`."""
    if not value:
        return default
    name = str(value).strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        logger.warning(f"Unknown log level {value!r}, using {default}")
        return default
    return name


@dataclass(frozen=True)
class SF40Settings:
    """Connection and protocol settings.

    Attributes:
        port: Serial device path
        baudrate: Serial baud rate (115200, 230400, 460800 or 921600)
        timeout: Transaction time budget in seconds
        poll_interval: Sleep between receive polls in seconds
        mock: Use MockTransport(auto_respond=True) instead of a serial port
        log_level: Name of the logging level for the CLI
    """

    port: str = DEFAULT_PORT
    baudrate: int = DEFAULT_BAUDRATE
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = POLL_INTERVAL
    mock: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "SF40Settings":
        env = os.environ if environ is None else environ
        timeout_ms = safe_float(env.get("SF40_TIMEOUT_MS"), "SF40_TIMEOUT_MS",
                                min_value=1.0, max_value=10000.0,
                                default=DEFAULT_TIMEOUT * 1000)
        poll_ms = safe_float(env.get("SF40_POLL_MS"), "SF40_POLL_MS",
                             min_value=0.01, max_value=100.0,
                             default=POLL_INTERVAL * 1000)
        return cls(
            port=env.get("SF40_PORT", DEFAULT_PORT),
            baudrate=safe_int(env.get("SF40_BAUD"), "SF40_BAUD", default=DEFAULT_BAUDRATE),
            timeout=timeout_ms / 1000.0,
            poll_interval=poll_ms / 1000.0,
            mock=parse_bool(env.get("SF40_MOCK_DEVICE"), default=False),
            log_level=parse_log_level(env.get("SF40_LOG_LEVEL")),
        )

    def override(self, **changes) -> "SF40Settings":
        """Copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
