"""SF40 protocol utilities: checksum, frame builders, packet reader and request/response logic.

Wire frame::

    [0xAA][header_lo][header_hi][command][payload...][crc_lo][crc_hi]

The 16-bit little-endian header carries the write flag in bit 15 and the
payload length (command byte + payload) in bits 0-9. The checksum covers every
byte from the start marker through the last payload byte.

This module contains pure helpers plus `read_frame` and `request`, which work
with TransportBase objects (see `transport.py`).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

START_BYTE = 0xAA
MAX_RESPONSE_SIZE = 1028
MAX_PAYLOAD_LEN = MAX_RESPONSE_SIZE - 5  # 1023, fills the 10-bit length field
HEADER_SIZE = 3
CHECKSUM_SIZE = 2

HEADER_LEN_MASK = 0x03FF
HEADER_WRITE_FLAG = 0x8000

DEFAULT_TIMEOUT = 0.1  # seconds, per transaction
POLL_INTERVAL = 0.001
DEFAULT_READ_TIMEOUT = 0.05  # bound on finishing a frame once its first byte arrived

BAD_START = "bad start marker"
BAD_LENGTH = "length out of range"
TRUNCATED = "truncated frame"
SHORT_PAYLOAD = "short payload"


# Exceptions for protocol-level errors
class SF40Error(Exception):
    """Base class for SF40 protocol errors."""


class SF40FramingError(SF40Error):
    """Raised when a packet cannot be framed (marker, length or truncation)."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)


class SF40ChecksumError(SF40Error):
    """Raised when the trailing checksum does not match the frame contents."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"checksum mismatch (frame 0x{expected:04X}, computed 0x{actual:04X})"
        )


class SF40TimeoutError(SF40Error):
    """Raised when no matching response arrives within the time budget."""


class SF40CancelledError(SF40Error):
    """Raised when a transaction is cancelled by the caller."""


class SF40WrongFrameType(SF40Error):
    """Raised when a stream read receives something other than telemetry."""

    def __init__(self, frame: "Frame"):
        self.frame = frame
        super().__init__(f"expected distance output frame, got command {frame.command}")


class SF40BufferOverflow(SF40Error):
    """Raised when a decoded element count exceeds the destination capacity."""


class SF40DeviceError(SF40Error):
    """Raised when the device answers with an unusable response."""


@dataclass(frozen=True)
class Frame:
    """A validated protocol frame."""

    command: int
    payload: bytes = b""
    write: bool = False

    @property
    def payload_len(self) -> int:
        """Length field value: command byte plus payload."""
        return len(self.payload) + 1

    def __repr__(self) -> str:
        return (
            f"Frame(command={self.command}, write={self.write}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def checksum(data: bytes) -> int:
    """16-bit frame checksum.

    Byte-wise shift/xor sequence required by the sensor firmware. Every
    intermediate value is truncated to 16 bits.
    """
    crc = 0
    for byte in data:
        code = (crc >> 8) ^ byte
        code ^= code >> 4
        crc = ((crc << 8) ^ code) & 0xFFFF
        code = (code << 5) & 0xFFFF
        crc ^= code
        code = (code << 7) & 0xFFFF
        crc ^= code
    return crc


def verify(data: bytes, expected: int) -> bool:
    """Return True if `expected` is the checksum of `data`."""
    return checksum(data) == expected


def pack_header(payload_len: int, write: bool = False) -> int:
    """Pack the length field and write flag into the 16-bit header word."""
    header = payload_len & HEADER_LEN_MASK
    if write:
        header |= HEADER_WRITE_FLAG
    return header


def header_payload_len(header: int) -> int:
    return header & HEADER_LEN_MASK


def header_is_write(header: int) -> bool:
    return bool(header & HEADER_WRITE_FLAG)


def build_frame(command: int, payload: bytes = b"", write: bool = False) -> bytes:
    """Build a complete wire frame.

    Args:
        command: Command id (0-255)
        payload: Command payload (empty for read requests)
        write: Set the write flag in the header

    Returns:
        Frame bytes ready to send, checksum included
    """
    if not 0 <= command <= 0xFF:
        raise ValueError(f"Command id out of range: {command}")
    payload_len = len(payload) + 1
    if payload_len > MAX_PAYLOAD_LEN:
        raise ValueError(f"Payload too large: {len(payload)} bytes")

    header = pack_header(payload_len, write)
    pkt = bytearray([START_BYTE, header & 0xFF, (header >> 8) & 0xFF, command])
    pkt.extend(payload)
    crc = checksum(pkt)
    pkt.extend([crc & 0xFF, (crc >> 8) & 0xFF])
    return bytes(pkt)


def _check_header(head: bytes) -> int:
    """Validate marker and length of a 3-byte header; return payload length."""
    if head[0] != START_BYTE:
        raise SF40FramingError(BAD_START, f"got 0x{head[0]:02X}")
    payload_len = header_payload_len(head[1] | (head[2] << 8))
    if payload_len < 1 or payload_len > MAX_PAYLOAD_LEN:
        raise SF40FramingError(BAD_LENGTH, f"payload length {payload_len}")
    return payload_len


def _finish_frame(head: bytes, body: bytes) -> Frame:
    """Check the checksum of header + body and build the Frame."""
    payload_len = len(body) - CHECKSUM_SIZE
    covered = head + body[:payload_len]
    expected = body[payload_len] | (body[payload_len + 1] << 8)
    actual = checksum(covered)
    if expected != actual:
        raise SF40ChecksumError(expected, actual)
    return Frame(
        command=body[0],
        payload=bytes(body[1:payload_len]),
        write=header_is_write(head[1] | (head[2] << 8)),
    )


def parse_frame(data: bytes) -> Frame:
    """Decode one complete frame held in memory.

    Trailing bytes after the checksum are ignored.

    Raises:
        SF40FramingError: bad marker, bad length or too few bytes
        SF40ChecksumError: checksum mismatch
    """
    if len(data) < HEADER_SIZE:
        raise SF40FramingError(TRUNCATED, f"{len(data)} bytes")
    head = bytes(data[:HEADER_SIZE])
    payload_len = _check_header(head)
    end = HEADER_SIZE + payload_len + CHECKSUM_SIZE
    if len(data) < end:
        raise SF40FramingError(TRUNCATED, f"expected {end} bytes, got {len(data)}")
    return _finish_frame(head, bytes(data[HEADER_SIZE:end]))


def _read_exact(transport, size: int, deadline: float) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = transport.read(size - len(buf))
        if chunk:
            buf.extend(chunk)
            continue
        if time.monotonic() >= deadline:
            raise SF40FramingError(TRUNCATED, f"expected {size} bytes, got {len(buf)}")
        time.sleep(POLL_INTERVAL)
    return bytes(buf)


def read_frame(
    transport, timeout: float = DEFAULT_READ_TIMEOUT, start: Optional[int] = None
) -> Frame:
    """Assemble one frame from the transport.

    Reads the 3 header bytes, validates marker and length before reading
    anything else, then reads command, payload and checksum.

    Args:
        transport: TransportBase instance
        timeout: Max seconds to wait for the remaining bytes of the frame
        start: Marker byte already consumed by `sync_to_start`; when given only
               the two header bytes are read

    Raises:
        SF40FramingError: bad marker (the 3 bytes are discarded), length out
                          of range, or the source stalled mid-frame
        SF40ChecksumError: checksum mismatch
    """
    deadline = time.monotonic() + timeout
    if start is None:
        head = _read_exact(transport, HEADER_SIZE, deadline)
    else:
        head = bytes([start]) + _read_exact(transport, HEADER_SIZE - 1, deadline)
    payload_len = _check_header(head)
    body = _read_exact(transport, payload_len + CHECKSUM_SIZE, deadline)
    return _finish_frame(head, body)


def sync_to_start(transport, deadline: float) -> Optional[int]:
    """Discard bytes until a start marker is read.

    Returns the marker byte, or None if the transport ran dry or the
    deadline passed first.
    """
    while time.monotonic() < deadline and transport.can_read():
        b = transport.read(1)
        if b and b[0] == START_BYTE:
            return b[0]
    return None


def request(
    transport,
    command: int,
    payload: bytes = b"",
    write: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = POLL_INTERVAL,
    deadline: Optional[float] = None,
    cancel_event=None,
    on_unmatched: Optional[Callable[[Frame], None]] = None,
    csv_logger=None,
    name: Optional[str] = None,
    phase: str = "operation",
) -> Frame:
    """Send one request and wait for the frame answering it.

    The request is sent exactly once. The transport is then polled every
    `poll_interval` seconds until a frame with the same command id arrives or
    the time budget runs out. Malformed packets are discarded and polling
    continues; frames for other commands go to `on_unmatched` (or are dropped).

    Args:
        transport: TransportBase instance
        command: Command id
        payload: Write payload (empty for reads)
        write: Send as a write request
        timeout: Time budget in seconds
        poll_interval: Sleep between polls
        deadline: Absolute `time.monotonic()` bound; the earlier of this and
                  `timeout` applies
        cancel_event: Optional threading.Event that aborts the wait
        on_unmatched: Called with each valid frame that does not match
        csv_logger: Optional CSVLogger instance for logging the transaction
        name: Operation name for logs (defaults to the command id)
        phase: Phase name for CSV logging

    Returns:
        The matching Frame

    Raises:
        SF40TimeoutError: no matching frame within the budget
        SF40CancelledError: cancel_event was set
    """
    name = name or f"CMD {command}"
    packet = build_frame(command, payload, write=write)
    t_start = time.monotonic()
    limit = t_start + timeout
    if deadline is not None:
        limit = min(limit, deadline)

    transport.write(packet)

    rx_bytes = 0
    rejected = 0
    start = None
    while True:
        time.sleep(poll_interval)
        now = time.monotonic()

        if cancel_event is not None and cancel_event.is_set():
            _log_transaction(csv_logger, phase, name, command, write, t_start,
                             len(packet) + rx_bytes, rejected, "CANCELLED", "NONE")
            raise SF40CancelledError(f"{name} cancelled")

        if now >= limit:
            logger.error(
                f"No response from lidar for {name} within {(now - t_start) * 1000:.0f} ms"
            )
            _log_transaction(csv_logger, phase, name, command, write, t_start,
                             len(packet) + rx_bytes, rejected, "TIMEOUT", "NONE")
            raise SF40TimeoutError(f"Timeout waiting for response to {name}")

        if start is None and not transport.can_read():
            continue

        try:
            frame = read_frame(transport, timeout=max(limit - now, poll_interval), start=start)
        except SF40FramingError as e:
            rejected += 1
            logger.debug(f"Discarding packet while waiting for {name}: {e}")
            start = sync_to_start(transport, limit) if e.reason == BAD_START else None
            continue
        except SF40ChecksumError as e:
            rejected += 1
            start = None
            logger.debug(f"Discarding packet while waiting for {name}: {e}")
            continue
        start = None
        rx_bytes += frame.payload_len + HEADER_SIZE + CHECKSUM_SIZE

        if frame.command == command:
            _log_transaction(csv_logger, phase, name, command, write, t_start,
                             len(packet) + rx_bytes, rejected, "COMPLETE",
                             "ACK" if write else "DATA")
            return frame

        if on_unmatched is not None:
            on_unmatched(frame)
        else:
            logger.debug(f"Dropping unmatched frame {frame!r} while waiting for {name}")


def _log_transaction(csv_logger, phase, name, command, write, t_start,
                     nbytes, rejected, state, response_type):
    if not csv_logger:
        return
    csv_logger.log_operation(
        phase=phase,
        operation=name,
        command=command,
        direction="W" if write else "R",
        duration_ms=(time.monotonic() - t_start) * 1000,
        bytes_transferred=nbytes,
        rejected_frames=rejected,
        state=state,
        response_type=response_type,
    )
