import pytest

from sf40 import commands
from sf40.commands import (
    AlarmConfig,
    AlarmState,
    BaudRate,
    OutputRate,
    SF40Command,
)


def test_every_command_has_a_spec():
    for cmd in SF40Command:
        spec = commands.get_spec(cmd)
        assert spec.command is cmd
        assert spec.readable or spec.writable
        if spec.writable:
            assert spec.write_size > 0


def test_get_spec_unknown_id():
    with pytest.raises(ValueError):
        commands.get_spec(4)
    assert commands.get_spec(105).command is SF40Command.DISTANCE


def test_spec_to_dict():
    d = commands.get_spec(SF40Command.FORWARD_OFFSET).to_dict()
    assert d == {
        "id": 109,
        "name": "FORWARD_OFFSET",
        "access": "RW",
        "description": "Forward offset [deg]",
        "read_size": 2,
        "write_size": 2,
    }


def test_command_summary_sorted():
    rows = commands.command_summary()
    assert rows[0][:3] == (0, "PRODUCT_NAME", "R")
    assert [r[0] for r in rows] == sorted(r[0] for r in rows)
    assert (48, "DISTANCE_OUTPUT", "R", "Distance output (stream)") in rows


def test_alarm_state_bits():
    state = AlarmState(0x85)
    assert state.any_active
    assert state.active == [1, 3]
    assert state.is_active(3)
    assert not state.is_active(2)
    assert not AlarmState(0x00).any_active
    with pytest.raises(ValueError):
        state.is_active(0)
    with pytest.raises(ValueError):
        state.is_active(8)


def test_alarm_command_mapping():
    assert commands.alarm_command(1) is SF40Command.ALARM_1
    assert commands.alarm_command(7) is SF40Command.ALARM_7
    with pytest.raises(ValueError):
        commands.alarm_command(0)


def test_alarm_encode_decode():
    cfg = AlarmConfig(enabled=True, direction=-45, width=20, distance_cm=250)
    raw = commands.encode_alarm(cfg)
    assert len(raw) == 7
    assert raw[0] == 1
    assert commands.decode_alarm(raw) == cfg


def test_firmware_version_byte_order():
    fw = commands.decode_firmware(bytes([3, 2, 1, 0]))
    assert (fw.major, fw.minor, fw.patch) == (1, 2, 3)
    assert str(fw) == "1.2.3"


def test_scalar_decoders():
    assert commands.decode_string(b"SF40\x00garbage") == "SF40"
    assert commands.decode_string(b"SF40") == "SF40"
    assert commands.decode_i16(b"\xf1\xff") == -15
    assert commands.decode_u16(b"\x34\x12") == 0x1234
    assert commands.decode_u32(b"\x2a\x00\x00\x00") == 42
    assert commands.decode_temperature((-150).to_bytes(4, "little", signed=True)) == pytest.approx(-1.5)
    assert commands.decode_motor_voltage((11500).to_bytes(2, "little")) == pytest.approx(11.5)
    assert commands.decode_voltage((4095).to_bytes(4, "little")) == pytest.approx(2.048 * 5.7)


def test_distance_decoder():
    raw = bytes.fromhex("2c01 fa00 5e01 8403 b0040000".replace(" ", ""))
    d = commands.decode_distance(raw)
    assert (d.average_cm, d.closest_cm, d.furthest_cm) == (300, 250, 350)
    assert d.angle_deg == pytest.approx(90.0)
    assert d.calculation_time_us == 1200


def test_user_data_encoding():
    assert commands.encode_user_data(b"abc") == b"abc" + b"\x00" * 13
    with pytest.raises(ValueError):
        commands.encode_user_data(b"\x00" * 17)


def test_baud_rate_enum():
    assert BaudRate.BAUD_115200.bps == 115200
    assert BaudRate.from_bps(230400) is BaudRate.BAUD_230400
    with pytest.raises(ValueError):
        BaudRate.from_bps(57600)


def test_output_rate_enum():
    assert [r.points_per_second for r in OutputRate] == [20010, 10005, 6670, 2001]
