import struct
import threading

import pytest

from sf40 import protocol
from sf40.commands import (
    AlarmConfig,
    BaudRate,
    DistanceReading,
    DistanceWindow,
    MotorState,
    OutputRate,
    SF40Command,
    StreamMode,
)
from sf40.driver import LightwareSF40
from sf40.transport import MockTransport


class IgnoringWritesMock(MockTransport):
    """Acknowledges writes but keeps the old register values."""

    def _respond(self, data):
        before = dict(self.registers)
        super()._respond(data)
        self.registers = before


def _stream_payload(distances):
    header = struct.pack("<BHhhBHHH", 0, 2001, 0, 12000, 1, 400, len(distances), 0)
    return header + struct.pack(f"<{len(distances)}h", *distances)


def test_mock_transport_queue_and_writes():
    t = MockTransport()
    assert not t.can_read()
    t.queue_response(b"\x01\x02\x03")
    assert t.can_read()
    assert t.read(2) == b"\x01\x02"
    assert t.read(5) == b"\x03"
    assert t.read() == b""

    t.write(b"\xAA")
    assert t.writes == [b"\xAA"]
    t.reset_output_buffer()
    assert t.writes == []


def test_mock_device_ignores_wrong_token():
    t = MockTransport(auto_respond=True)
    t.write(protocol.build_frame(SF40Command.SAVE_PARAMETERS, b"\x00\x00", write=True))
    assert not t.can_read()
    assert t.saves == 0


def test_info_snapshot():
    with LightwareSF40(MockTransport(auto_respond=True)) as lidar:
        info = lidar.info()

    assert info["product_name"] == "SF40"
    assert info["hardware_version"] == 1
    assert info["firmware_version"] == "2.1.0"
    assert info["serial_number"] == "MOCK-0001"
    assert info["incoming_voltage"] == pytest.approx(12.0, abs=0.01)
    assert info["temperature"] == pytest.approx(23.5)
    assert info["motor_state"] == "NORMAL"
    assert info["motor_voltage"] == pytest.approx(12.0)
    assert info["output_rate"] == 2001
    assert info["forward_offset"] == 0
    assert info["revolutions"] == 42


def test_typed_readers():
    lidar = LightwareSF40(MockTransport(auto_respond=True))
    assert lidar.get_motor_state() is MotorState.NORMAL
    assert lidar.get_output_rate() is OutputRate.PPS_2001
    assert lidar.get_stream_mode() is StreamMode.DISABLED
    assert lidar.get_laser_firing() is True
    assert lidar.get_alarm_state().active == []

    d = lidar.get_distance()
    assert d == DistanceReading(300, 250, 350, 900, 1200)
    assert d.angle_deg == pytest.approx(90.0)


def test_set_and_verify():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)

    lidar.set_forward_offset(-15, verify=True)
    assert lidar.get_forward_offset() == -15

    lidar.set_output_rate(OutputRate.PPS_10005, verify=True)
    assert lidar.get_output_rate() is OutputRate.PPS_10005

    lidar.set_laser_firing(False, verify=True)
    assert lidar.get_laser_firing() is False

    lidar.set_user_data(b"hello", verify=True)
    assert lidar.get_user_data() == b"hello".ljust(16, b"\x00")

    lidar.set_alarm(3, AlarmConfig(True, 90, 20, 150), verify=True)
    assert lidar.get_alarm(3) == AlarmConfig(True, 90, 20, 150)
    assert lidar.get_alarm(4) == AlarmConfig(False, 0, 10, 100)


def test_distance_window_write():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)
    lidar.set_distance_window(DistanceWindow(direction=0, width=30, min_distance_cm=50))
    assert t.distance_window == struct.pack("<hhh", 0, 30, 50)


def test_verify_mismatch_raises():
    lidar = LightwareSF40(IgnoringWritesMock(auto_respond=True))
    # unverified write is acknowledged
    lidar.set_forward_offset(10)
    with pytest.raises(protocol.SF40DeviceError):
        lidar.set_forward_offset(10, verify=True)


def test_command_argument_errors():
    lidar = LightwareSF40(MockTransport(auto_respond=True))
    with pytest.raises(ValueError):
        lidar.read_command(SF40Command.SAVE_PARAMETERS)
    with pytest.raises(ValueError):
        lidar.write_command(SF40Command.PRODUCT_NAME, b"SF41")
    with pytest.raises(ValueError):
        lidar.set_user_data(b"x" * 17)
    with pytest.raises(ValueError):
        lidar.set_distance_window(DistanceWindow(0, 30, 50), verify=True)
    with pytest.raises(ValueError):
        lidar.get_alarm(8)
    with pytest.raises(ValueError):
        lidar.read_command(200)


def test_save_and_reset_use_fresh_token():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)

    lidar.save_parameters()
    assert t.saves == 1
    assert t.token == (0x1234 * 31 + 7) & 0xFFFF

    # second save must fetch the rotated token
    lidar.save_parameters()
    assert t.saves == 2

    lidar.reset()
    assert t.resets == 1


def test_set_baud_rate():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)

    lidar.set_baud_rate(460800)
    assert t.baudrate == 460800
    assert t.writes[-1] == protocol.build_frame(SF40Command.BAUD_RATE, b"\x06", write=True)

    lidar.set_baud_rate(BaudRate.BAUD_921600)
    assert t.baudrate == 921600

    with pytest.raises(ValueError):
        lidar.set_baud_rate(9600)


def test_timeout_without_device():
    lidar = LightwareSF40(MockTransport(), timeout=0.02)
    with pytest.raises(protocol.SF40TimeoutError):
        lidar.get_product_name()


def test_short_response_payload():
    t = MockTransport()
    t.queue_frame(SF40Command.TEMPERATURE, b"\x01")
    lidar = LightwareSF40(t, timeout=0.2)
    with pytest.raises(protocol.SF40DeviceError):
        lidar.get_temperature()


def test_stream_frames_kept_during_transaction():
    t = MockTransport()
    t.queue_frame(SF40Command.DISTANCE_OUTPUT, _stream_payload([150, -1, 9999]))
    t.queue_frame(SF40Command.TEMPERATURE, (2350).to_bytes(4, "little"))

    lidar = LightwareSF40(t, timeout=0.2)
    assert lidar.get_temperature() == pytest.approx(23.5)
    assert len(lidar.stream_buffer) == 1
    assert lidar.read_stream_sample().distances.tolist() == [150, -1, 9999]


def test_stream_frames_dropped_when_not_kept():
    t = MockTransport()
    t.queue_frame(SF40Command.DISTANCE_OUTPUT, _stream_payload([1, 2]))
    t.queue_frame(SF40Command.TEMPERATURE, (2350).to_bytes(4, "little"))

    lidar = LightwareSF40(t, timeout=0.2, keep_stream_frames=False)
    assert lidar.get_temperature() == pytest.approx(23.5)
    assert len(lidar.stream_buffer) == 0


def test_read_stream_sample_skips_responses():
    t = MockTransport()
    t.queue_frame(SF40Command.TEMPERATURE, (2350).to_bytes(4, "little"))
    t.queue_response(b"\x00\x00\x00")
    t.queue_frame(SF40Command.DISTANCE_OUTPUT, _stream_payload([5, 6]))

    lidar = LightwareSF40(t)
    assert lidar.read_stream_sample(timeout=0.5).distances.tolist() == [5, 6]

    with pytest.raises(protocol.SF40TimeoutError):
        lidar.read_stream_sample(timeout=0.02)


def test_get_scan_from_mock_stream():
    lidar = LightwareSF40(MockTransport(auto_respond=True))
    lidar.set_streaming(True)
    assert lidar.get_stream_mode() is StreamMode.DISTANCE

    scan = lidar.get_scan(timeout=2.0)
    lidar.set_streaming(False)

    assert len(scan) == MockTransport.STREAM_POINT_TOTAL
    assert scan.angles[1] == pytest.approx(0.9)
    assert scan.distances[0] == 300
    assert scan.distances.min() >= 250
    assert scan.distances.max() <= 350


def test_background_reader_and_commands():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)
    lidar.set_streaming(True)
    lidar.start_stream_reader()
    try:
        sample = lidar.read_stream_sample(timeout=1.0)
        assert sample.point_count == MockTransport.STREAM_POINTS_PER_FRAME
        # commands still get answers while the reader runs
        assert lidar.get_temperature() == pytest.approx(23.5)
    finally:
        lidar.stop_stream_reader()
    lidar.set_streaming(False)
    assert not t.streaming


def test_concurrent_requests_are_serialised():
    lidar = LightwareSF40(MockTransport(auto_respond=True))
    results = []
    errors = []

    def worker():
        try:
            for _ in range(10):
                results.append((lidar.get_product_name(), lidar.get_revolutions()))
        except protocol.SF40Error as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for th in threads:
        th.start()
    for th in threads:
        th.join(5.0)

    assert errors == []
    assert results == [("SF40", 42)] * 40


def test_from_settings_mock():
    from sf40.config import SF40Settings

    lidar = LightwareSF40.from_settings(SF40Settings(mock=True, timeout=0.5))
    assert isinstance(lidar.transport, MockTransport)
    assert lidar.timeout == 0.5
    assert lidar.get_product_name() == "SF40"
    lidar.close()


def test_out_of_range_values_rejected():
    t = MockTransport(auto_respond=True)
    lidar = LightwareSF40(t)
    with pytest.raises(ValueError):
        lidar.set_forward_offset(40000)
    with pytest.raises(ValueError):
        lidar.set_alarm(1, AlarmConfig(True, 0, 10, 70000))
    with pytest.raises(ValueError):
        lidar.set_distance_window(DistanceWindow(-40000, 30, 50))
    # nothing reached the wire
    assert t.writes == []


def test_transport_interface():
    for name in ("write", "read", "can_read", "set_baudrate",
                 "reset_input_buffer", "reset_output_buffer", "close"):
        assert callable(getattr(MockTransport(), name))
    assert not hasattr(MockTransport(), "set_timeout")
