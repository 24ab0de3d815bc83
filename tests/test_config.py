import pytest

from sf40 import protocol
from sf40.config import SF40Settings, parse_bool, parse_log_level, safe_float, safe_int


def test_safe_int():
    assert safe_int("12", "x") == 12
    assert safe_int(None, "x", default=3) == 3
    assert safe_int(500, "x", min_value=0, max_value=100) == 100
    assert safe_int(-5, "x", min_value=0) == 0
    with pytest.raises(ValueError):
        safe_int(None, "x")
    with pytest.raises(ValueError):
        safe_int("abc", "x")


def test_safe_float():
    assert safe_float("0.5", "x") == 0.5
    assert safe_float("0", "x", min_value=0.01) == 0.01
    with pytest.raises(ValueError):
        safe_float("fast", "x")


def test_parse_bool():
    assert parse_bool("yes")
    assert parse_bool("1")
    assert parse_bool(" TRUE ")
    assert not parse_bool("off")
    assert not parse_bool(None)
    assert parse_bool(None, default=True)
    assert parse_bool(1)


def test_settings_defaults():
    s = SF40Settings.from_env({})
    assert s.port == "/dev/ttyUSB0"
    assert s.baudrate == 115200
    assert s.timeout == pytest.approx(protocol.DEFAULT_TIMEOUT)
    assert s.poll_interval == pytest.approx(protocol.POLL_INTERVAL)
    assert s.mock is False
    assert s.log_level == "INFO"


def test_settings_from_env():
    s = SF40Settings.from_env({
        "SF40_PORT": "/dev/ttyAMA0",
        "SF40_BAUD": "460800",
        "SF40_TIMEOUT_MS": "250",
        "SF40_POLL_MS": "2",
        "SF40_MOCK_DEVICE": "yes",
        "SF40_LOG_LEVEL": "debug",
    })
    assert s.port == "/dev/ttyAMA0"
    assert s.baudrate == 460800
    assert s.timeout == pytest.approx(0.25)
    assert s.poll_interval == pytest.approx(0.002)
    assert s.mock is True
    assert s.log_level == "DEBUG"


def test_settings_clamped():
    s = SF40Settings.from_env({"SF40_TIMEOUT_MS": "999999", "SF40_POLL_MS": "0"})
    assert s.timeout == pytest.approx(10.0)
    assert s.poll_interval == pytest.approx(0.00001)


def test_settings_invalid_value():
    with pytest.raises(ValueError):
        SF40Settings.from_env({"SF40_BAUD": "fast"})


def test_settings_from_process_environment(monkeypatch):
    monkeypatch.setenv("SF40_MOCK_DEVICE", "1")
    monkeypatch.setenv("SF40_TIMEOUT_MS", "50")
    s = SF40Settings.from_env()
    assert s.mock is True
    assert s.timeout == pytest.approx(0.05)


def test_settings_override_skips_none():
    s = SF40Settings().override(port="/dev/ttyS1", baudrate=None, mock=True)
    assert s.port == "/dev/ttyS1"
    assert s.baudrate == 115200
    assert s.mock is True


def test_log_level_names():
    assert SF40Settings.from_env({"SF40_LOG_LEVEL": "warning"}).log_level == "WARNING"
    assert SF40Settings.from_env({"SF40_LOG_LEVEL": "verbose"}).log_level == "INFO"
    assert parse_log_level("") == "INFO"
    assert parse_log_level(" error ") == "ERROR"
