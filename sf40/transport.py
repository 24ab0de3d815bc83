"""Transport abstractions for the SF40 protocol (Serial + Mock)

Keep this small and explicit. Real SerialTransport wraps pyserial. MockTransport
is for unit tests and mock-device runs: it simulates byte-at-a-time reads and
queued responses, and can play the part of an SF40.
"""

from __future__ import annotations

import logging
import struct

import numpy as np

from . import protocol
from .commands import COMMANDS, BaudRate, SF40Command, StreamMode

logger = logging.getLogger(__name__)

DEFAULT_PORT = "/dev/ttyUSB0"
DEFAULT_BAUDRATE = 115200


class TransportBase:
    def write(self, data: bytes) -> int:  # returns bytes written
        raise NotImplementedError

    def read(self, size: int = 1) -> bytes:
        raise NotImplementedError

    def can_read(self) -> bool:  # non-blocking poll
        raise NotImplementedError

    def set_baudrate(self, baudrate: int):
        raise NotImplementedError

    def reset_input_buffer(self):
        raise NotImplementedError

    def reset_output_buffer(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class SerialTransport(TransportBase):
    def __init__(
        self,
        port: str = DEFAULT_PORT,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = 0.01,
        byte_logger=None,
    ):
        import serial

        self._serial_exc = serial.SerialException
        self._ser = serial.Serial(port, baudrate, timeout=timeout)
        self.byte_logger = byte_logger
        logger.info(f"Opened {port} at {baudrate} baud")

    def write(self, data: bytes) -> int:
        if self.byte_logger:
            self.byte_logger.log_send(data)
        return self._ser.write(data)

    def read(self, size: int = 1) -> bytes:
        data = self._ser.read(size)
        if self.byte_logger:
            self.byte_logger.log_recv(data)
        return data

    def can_read(self) -> bool:
        return self._ser.in_waiting > 0

    def set_baudrate(self, baudrate: int):
        self._ser.baudrate = baudrate

    def reset_input_buffer(self):
        try:
            self._ser.reset_input_buffer()
        except self._serial_exc as e:
            logger.warning(f"reset_input_buffer failed: {e}")

    def reset_output_buffer(self):
        try:
            self._ser.reset_output_buffer()
        except self._serial_exc as e:
            logger.warning(f"reset_output_buffer failed: {e}")

    def close(self):
        try:
            self._ser.close()
        except self._serial_exc as e:
            logger.warning(f"close failed: {e}")


class MockTransport(TransportBase):
    """Simple mock transport for unit tests and mock-device runs.

    Usage:
        m = MockTransport()
        m.queue_response(protocol.build_frame(0, b"SF40\\x00"))
        m.write(protocol.build_frame(0))
        b = m.read(3)

    If auto_respond is True, written frames are answered the way an SF40 would:
    reads return the current register value, writes update it and are echoed,
    and once streaming is enabled distance-output frames are generated
    whenever the receive buffer runs empty.
    """

    STREAM_POINTS_PER_FRAME = 100
    STREAM_POINT_TOTAL = 400

    def __init__(self, auto_respond: bool = False, byte_logger=None):
        self._write_log = []
        self._resp = bytearray()
        self._auto = auto_respond
        self.byte_logger = byte_logger
        self.baudrate = DEFAULT_BAUDRATE
        self.registers = self._default_registers()
        self.distance_window = b"\x00" * 6
        self.token = 0x1234
        self.resets = 0
        self.saves = 0
        self._revolution = 0
        self._stream_index = 0

    @staticmethod
    def _default_registers() -> dict:
        return {
            SF40Command.PRODUCT_NAME: b"SF40".ljust(16, b"\x00"),
            SF40Command.HARDWARE_VERSION: (1).to_bytes(4, "little"),
            SF40Command.FIRMWARE_VERSION: bytes([0, 1, 2, 0]),
            SF40Command.SERIAL_NUMBER: b"MOCK-0001".ljust(16, b"\x00"),
            SF40Command.USER_DATA: b"\x00" * 16,
            SF40Command.INCOMING_VOLTAGE: (4209).to_bytes(4, "little"),
            SF40Command.STREAM: bytes([StreamMode.DISABLED]),
            SF40Command.LASER_FIRING: b"\x01",
            SF40Command.TEMPERATURE: (2350).to_bytes(4, "little", signed=True),
            SF40Command.DISTANCE: struct.pack("<hhhhI", 300, 250, 350, 900, 1200),
            SF40Command.MOTOR_STATE: b"\x03",
            SF40Command.MOTOR_VOLTAGE: (12000).to_bytes(2, "little"),
            SF40Command.OUTPUT_RATE: b"\x03",
            SF40Command.FORWARD_OFFSET: (0).to_bytes(2, "little", signed=True),
            SF40Command.REVOLUTIONS: (42).to_bytes(4, "little"),
            SF40Command.ALARM_STATE: b"\x00",
            **{SF40Command(cmd): struct.pack("<Bhhh", 0, 0, 10, 100)
               for cmd in range(SF40Command.ALARM_1, SF40Command.ALARM_7 + 1)},
        }

    @property
    def streaming(self) -> bool:
        return self.registers[SF40Command.STREAM][0] == StreamMode.DISTANCE

    def queue_response(self, data: bytes):
        self._resp.extend(data)

    def queue_frame(self, command: int, payload: bytes = b"", write: bool = False):
        self.queue_response(protocol.build_frame(command, payload, write=write))

    def write(self, data: bytes) -> int:
        self._write_log.append(bytes(data))
        if self.byte_logger:
            self.byte_logger.log_send(data)
        if self._auto and data:
            self._respond(bytes(data))
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if not self._resp and self._auto and self.streaming:
            self._queue_stream_frame()
        if not self._resp:
            return b""
        out = bytes(self._resp[:size])
        del self._resp[:size]
        if self.byte_logger:
            self.byte_logger.log_recv(out)
        return out

    def can_read(self) -> bool:
        return bool(self._resp) or (self._auto and self.streaming)

    def set_baudrate(self, baudrate: int):
        self.baudrate = baudrate

    def reset_input_buffer(self):
        self._resp = bytearray()

    def reset_output_buffer(self):
        self._write_log = []

    def close(self):
        self._resp = bytearray()
        self._write_log = []

    @property
    def writes(self):
        return list(self._write_log)

    # --- simulated device ---------------------------------------------------

    def _respond(self, data: bytes):
        try:
            frame = protocol.parse_frame(data)
        except protocol.SF40Error as e:
            logger.debug(f"Mock device ignored malformed request: {e}")
            return
        try:
            cmd = SF40Command(frame.command)
        except ValueError:
            logger.debug(f"Mock device ignored unknown command {frame.command}")
            return

        if not frame.write:
            if cmd == SF40Command.TOKEN:
                self.queue_frame(cmd, self.token.to_bytes(2, "little"))
            elif cmd in self.registers:
                self.queue_frame(cmd, self.registers[cmd])
            return

        if cmd in (SF40Command.SAVE_PARAMETERS, SF40Command.RESET):
            # token is single use; a wrong token gets no answer
            if int.from_bytes(frame.payload[:2], "little") != self.token:
                return
            self.token = (self.token * 31 + 7) & 0xFFFF
            if cmd == SF40Command.RESET:
                self.resets += 1
            else:
                self.saves += 1
        elif cmd == SF40Command.BAUD_RATE:
            if frame.payload[0] not in {rate.value for rate in BaudRate}:
                return
            self.baudrate = BaudRate(frame.payload[0]).bps
        elif cmd == SF40Command.DISTANCE:
            self.distance_window = frame.payload
        elif cmd in self.registers and COMMANDS[cmd].writable:
            self.registers[cmd] = frame.payload
            if cmd == SF40Command.STREAM and not self.streaming:
                self._stream_index = 0
        self.queue_frame(cmd, frame.payload, write=True)

    def _queue_stream_frame(self):
        total = self.STREAM_POINT_TOTAL
        start = self._stream_index
        count = min(self.STREAM_POINTS_PER_FRAME, total - start)
        theta = np.radians(np.arange(start, start + count) * 360.0 / total)
        distances = (300 + 50 * np.sin(4 * theta)).astype("<i2")
        offset = int.from_bytes(self.registers[SF40Command.FORWARD_OFFSET], "little", signed=True)
        mv = int.from_bytes(self.registers[SF40Command.MOTOR_VOLTAGE], "little")
        rate = self.registers[SF40Command.OUTPUT_RATE][0]
        header = struct.pack(
            "<BHhhBHHH",
            self.registers[SF40Command.ALARM_STATE][0],
            (20010, 10005, 6670, 2001)[rate],
            offset,
            mv,
            self._revolution,
            total,
            count,
            start,
        )
        self.queue_frame(SF40Command.DISTANCE_OUTPUT, header + distances.tobytes())
        self._stream_index = start + count
        if self._stream_index >= total:
            self._stream_index = 0
            self._revolution = (self._revolution + 1) & 0xFF
