"""SF40 command table.

Maps each command id to its access mode, payload sizes and the functions that
decode a response payload or encode a write payload. The driver generates its
typed accessors from this table, so adding a command means adding one
CommandSpec entry here.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import processing


class SF40Command(IntEnum):
    """SF40 command ids"""
    PRODUCT_NAME = 0
    HARDWARE_VERSION = 1
    FIRMWARE_VERSION = 2
    SERIAL_NUMBER = 3
    USER_DATA = 9
    TOKEN = 10
    SAVE_PARAMETERS = 12
    RESET = 14
    INCOMING_VOLTAGE = 20
    STREAM = 30
    DISTANCE_OUTPUT = 48
    LASER_FIRING = 50
    TEMPERATURE = 55
    BAUD_RATE = 90
    DISTANCE = 105
    MOTOR_STATE = 106
    MOTOR_VOLTAGE = 107
    OUTPUT_RATE = 108
    FORWARD_OFFSET = 109
    REVOLUTIONS = 110
    ALARM_STATE = 111
    ALARM_1 = 112
    ALARM_2 = 113
    ALARM_3 = 114
    ALARM_4 = 115
    ALARM_5 = 116
    ALARM_6 = 117
    ALARM_7 = 118


ALARM_COMMANDS = tuple(SF40Command(SF40Command.ALARM_1 + i) for i in range(7))


class BaudRate(IntEnum):
    BAUD_115200 = 4
    BAUD_230400 = 5
    BAUD_460800 = 6
    BAUD_921600 = 7

    @property
    def bps(self) -> int:
        return _BAUD_BPS[self]

    @classmethod
    def from_bps(cls, bps: int) -> "BaudRate":
        for rate, value in _BAUD_BPS.items():
            if value == bps:
                return rate
        raise ValueError(f"Unsupported baud rate: {bps}")


_BAUD_BPS = {
    BaudRate.BAUD_115200: 115200,
    BaudRate.BAUD_230400: 230400,
    BaudRate.BAUD_460800: 460800,
    BaudRate.BAUD_921600: 921600,
}


class OutputRate(IntEnum):
    PPS_20010 = 0
    PPS_10005 = 1
    PPS_6670 = 2
    PPS_2001 = 3

    @property
    def points_per_second(self) -> int:
        return (20010, 10005, 6670, 2001)[self]


class MotorState(IntEnum):
    """Motor state reported by command 106.

    PRE_STARTUP -> WAIT_ON_REVS -> NORMAL; ERROR can follow any state.
    """
    PRE_STARTUP = 1
    WAIT_ON_REVS = 2
    NORMAL = 3
    ERROR = 4


class StreamMode(IntEnum):
    DISABLED = 0
    DISTANCE = 3


@dataclass(frozen=True)
class AlarmState:
    """Alarm bitfield: bits 0-6 are alarms 1-7, bit 7 is set if any is active."""

    raw: int

    def is_active(self, alarm: int) -> bool:
        if not 1 <= alarm <= 7:
            raise ValueError(f"Alarm number must be 1-7, got {alarm}")
        return bool((self.raw >> (alarm - 1)) & 0x01)

    @property
    def any_active(self) -> bool:
        return bool(self.raw & 0x80)

    @property
    def active(self) -> List[int]:
        return [n for n in range(1, 8) if self.is_active(n)]


@dataclass(frozen=True)
class FirmwareVersion:
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class DistanceReading:
    """Result of a distance read (command 105)."""

    average_cm: int
    closest_cm: int
    furthest_cm: int
    angle_tenths: int
    calculation_time_us: int

    @property
    def angle_deg(self) -> float:
        return processing.tenths_to_degrees(self.angle_tenths)


@dataclass(frozen=True)
class DistanceWindow:
    """Sector used for distance reads: direction/width in degrees, min distance in cm."""

    direction: int
    width: int
    min_distance_cm: int


@dataclass(frozen=True)
class AlarmConfig:
    enabled: bool
    direction: int
    width: int
    distance_cm: int


# --- payload decoders -------------------------------------------------------

def decode_string(payload: bytes) -> str:
    """NUL-terminated ASCII string."""
    return payload.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def decode_u8(payload: bytes) -> int:
    return payload[0]


def decode_u16(payload: bytes) -> int:
    return int.from_bytes(payload[:2], "little")


def decode_i16(payload: bytes) -> int:
    return int.from_bytes(payload[:2], "little", signed=True)


def decode_u32(payload: bytes) -> int:
    return int.from_bytes(payload[:4], "little")


def decode_bool(payload: bytes) -> bool:
    return payload[0] != 0


def decode_firmware(payload: bytes) -> FirmwareVersion:
    return FirmwareVersion(major=payload[2], minor=payload[1], patch=payload[0])


def decode_voltage(payload: bytes) -> float:
    return processing.counts_to_volts(decode_u32(payload))


def decode_temperature(payload: bytes) -> float:
    raw = int.from_bytes(payload[:4], "little", signed=True)
    return processing.raw_to_celsius(raw)


def decode_motor_voltage(payload: bytes) -> float:
    return processing.millivolts_to_volts(decode_u16(payload))


def decode_distance(payload: bytes) -> DistanceReading:
    avg, closest, furthest, angle, calc = struct.unpack_from("<hhhhI", payload)
    return DistanceReading(avg, closest, furthest, angle, calc)


def decode_alarm(payload: bytes) -> AlarmConfig:
    enabled, direction, width, distance = struct.unpack_from("<Bhhh", payload)
    return AlarmConfig(bool(enabled), direction, width, distance)


# --- payload encoders -------------------------------------------------------

def encode_u8(value: int) -> bytes:
    return int(value).to_bytes(1, "little")


def encode_u16(value: int) -> bytes:
    return int(value).to_bytes(2, "little")


def encode_i16(value: int) -> bytes:
    return int(value).to_bytes(2, "little", signed=True)


def encode_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def encode_user_data(data: bytes) -> bytes:
    if len(data) > 16:
        raise ValueError(f"User data is limited to 16 bytes, got {len(data)}")
    return bytes(data).ljust(16, b"\x00")


def encode_distance_window(window: DistanceWindow) -> bytes:
    return struct.pack("<hhh", window.direction, window.width, window.min_distance_cm)


def encode_alarm(alarm: AlarmConfig) -> bytes:
    return struct.pack(
        "<Bhhh", 1 if alarm.enabled else 0, alarm.direction, alarm.width, alarm.distance_cm
    )


@dataclass(frozen=True)
class CommandSpec:
    """Static description of one SF40 command.

    read_size is the minimum response payload the decoder needs; write_size is
    the exact payload length of a write request.
    """
    command: SF40Command
    access: str
    description: str
    read_size: int = 0
    write_size: int = 0
    decode: Optional[Callable[[bytes], Any]] = field(default=None, repr=False)
    encode: Optional[Callable[[Any], bytes]] = field(default=None, repr=False)

    @property
    def readable(self) -> bool:
        return "R" in self.access

    @property
    def writable(self) -> bool:
        return "W" in self.access

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON/preview"""
        return {
            "id": int(self.command),
            "name": self.command.name,
            "access": self.access,
            "description": self.description,
            "read_size": self.read_size,
            "write_size": self.write_size,
        }


def _alarm_spec(command: SF40Command) -> CommandSpec:
    n = command - SF40Command.ALARM_1 + 1
    return CommandSpec(command, "RW", f"Alarm {n} configuration", 7, 7,
                       decode_alarm, encode_alarm)


COMMANDS: Dict[SF40Command, CommandSpec] = {
    spec.command: spec
    for spec in (
        CommandSpec(SF40Command.PRODUCT_NAME, "R", "Product name", 1, 0, decode_string),
        CommandSpec(SF40Command.HARDWARE_VERSION, "R", "Hardware version", 4, 0, decode_u32),
        CommandSpec(SF40Command.FIRMWARE_VERSION, "R", "Firmware version", 4, 0, decode_firmware),
        CommandSpec(SF40Command.SERIAL_NUMBER, "R", "Serial number", 1, 0, decode_string),
        CommandSpec(SF40Command.USER_DATA, "RW", "User data", 16, 16,
                    lambda p: bytes(p[:16]), encode_user_data),
        CommandSpec(SF40Command.TOKEN, "R", "Save/reset token", 2, 0, decode_u16),
        CommandSpec(SF40Command.SAVE_PARAMETERS, "W", "Save parameters", 0, 2, None, encode_u16),
        CommandSpec(SF40Command.RESET, "W", "Reset", 0, 2, None, encode_u16),
        CommandSpec(SF40Command.INCOMING_VOLTAGE, "R", "Incoming voltage [V]", 4, 0, decode_voltage),
        CommandSpec(SF40Command.STREAM, "RW", "Stream mode", 1, 1,
                    lambda p: StreamMode(p[0]), encode_u8),
        CommandSpec(SF40Command.DISTANCE_OUTPUT, "R", "Distance output (stream)", 14, 0),
        CommandSpec(SF40Command.LASER_FIRING, "RW", "Laser firing", 1, 1, decode_bool, encode_bool),
        CommandSpec(SF40Command.TEMPERATURE, "R", "Temperature [C]", 4, 0, decode_temperature),
        CommandSpec(SF40Command.BAUD_RATE, "W", "Baud rate", 0, 1, None, encode_u8),
        CommandSpec(SF40Command.DISTANCE, "RW", "Distance in sector", 12, 6,
                    decode_distance, encode_distance_window),
        CommandSpec(SF40Command.MOTOR_STATE, "R", "Motor state", 1, 0,
                    lambda p: MotorState(p[0])),
        CommandSpec(SF40Command.MOTOR_VOLTAGE, "R", "Motor voltage [V]", 2, 0, decode_motor_voltage),
        CommandSpec(SF40Command.OUTPUT_RATE, "RW", "Output rate", 1, 1,
                    lambda p: OutputRate(p[0]), encode_u8),
        CommandSpec(SF40Command.FORWARD_OFFSET, "RW", "Forward offset [deg]", 2, 2,
                    decode_i16, encode_i16),
        CommandSpec(SF40Command.REVOLUTIONS, "R", "Revolutions", 4, 0, decode_u32),
        CommandSpec(SF40Command.ALARM_STATE, "R", "Alarm state", 1, 0,
                    lambda p: AlarmState(p[0])),
    )
}
COMMANDS.update({cmd: _alarm_spec(cmd) for cmd in ALARM_COMMANDS})


def get_spec(command: int) -> CommandSpec:
    """Look up the CommandSpec for a command id."""
    try:
        return COMMANDS[SF40Command(command)]
    except ValueError:
        raise ValueError(f"Unknown SF40 command id: {command}") from None


def alarm_command(alarm: int) -> SF40Command:
    if not 1 <= alarm <= 7:
        raise ValueError(f"Alarm number must be 1-7, got {alarm}")
    return ALARM_COMMANDS[alarm - 1]


def command_summary() -> List[Tuple[int, str, str, str]]:
    """(id, name, access, description) rows for every known command."""
    return [(int(s.command), s.command.name, s.access, s.description)
            for s in sorted(COMMANDS.values(), key=lambda s: s.command)]
