"""Distance-output stream decoding.

When streaming is enabled (command 30 = 3) the SF40 pushes unsolicited
distance-output frames (command 48). Each frame carries a slice of one
revolution::

    offset  size  field
    0       1     alarm state
    1       2     points per second (u16)
    3       2     forward offset (i16)
    5       2     motor voltage (i16, mV)
    7       1     revolution index (u8, wraps after 255)
    8       2     point total for this revolution (u16)
    10      2     point count in this frame (u16)
    12      2     index of the first point (u16)
    14      2*n   distances in cm (i16)
"""

from __future__ import annotations

import logging
import queue
import struct
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from . import processing
from .commands import AlarmState, SF40Command
from .protocol import (
    DEFAULT_READ_TIMEOUT,
    POLL_INTERVAL,
    SHORT_PAYLOAD,
    SF40BufferOverflow,
    SF40ChecksumError,
    SF40FramingError,
    SF40WrongFrameType,
    Frame,
    read_frame,
)

logger = logging.getLogger(__name__)

STREAM_HEADER_SIZE = 14
MAX_STREAM_POINTS = 200  # destination capacity per frame
_HEADER = struct.Struct("<BHhhBHHH")


@dataclass
class StreamSample:
    """One decoded distance-output frame."""

    alarm_state: AlarmState
    points_per_second: int
    forward_offset: int
    motor_voltage_mv: int
    revolution_index: int
    point_total: int
    point_count: int
    point_start_index: int
    distances: np.ndarray  # int16, cm
    timestamp: float = 0.0

    @property
    def motor_voltage(self) -> float:
        return processing.millivolts_to_volts(self.motor_voltage_mv)

    @property
    def angles(self) -> np.ndarray:
        """Angle in degrees of each distance in this frame."""
        return processing.point_angles(
            self.point_total, self.forward_offset, self.point_start_index, self.point_count
        )


@dataclass
class Scan:
    """One complete revolution assembled from stream samples."""

    revolution_index: int
    angles: np.ndarray
    distances: np.ndarray
    timestamp: float

    def __len__(self) -> int:
        return len(self.distances)

    def to_xy(self) -> np.ndarray:
        return processing.polar_to_xy(self.angles, self.distances)


def decode_stream_payload(payload: bytes, capacity: int = MAX_STREAM_POINTS) -> StreamSample:
    """Decode a distance-output payload (command byte excluded).

    Raises:
        SF40FramingError: payload shorter than its header or declared points
        SF40BufferOverflow: point count exceeds `capacity`
    """
    if len(payload) < STREAM_HEADER_SIZE:
        raise SF40FramingError(SHORT_PAYLOAD, f"stream header needs {STREAM_HEADER_SIZE} bytes, got {len(payload)}")

    (alarm, pps, offset, motor_mv, rev, total, count, start) = _HEADER.unpack_from(payload)

    # capacity check comes before any copy
    if count > capacity:
        raise SF40BufferOverflow(f"stream frame has {count} points, capacity is {capacity}")
    needed = STREAM_HEADER_SIZE + 2 * count
    if len(payload) < needed:
        raise SF40FramingError(SHORT_PAYLOAD, f"{count} points need {needed} bytes, got {len(payload)}")

    if count:
        distances = np.frombuffer(payload, dtype="<i2", count=count, offset=STREAM_HEADER_SIZE)
    else:
        distances = np.zeros(0, dtype="<i2")
    return StreamSample(
        alarm_state=AlarmState(alarm),
        points_per_second=pps,
        forward_offset=offset,
        motor_voltage_mv=motor_mv,
        revolution_index=rev,
        point_total=total,
        point_count=count,
        point_start_index=start,
        distances=distances.astype(np.int16),
        timestamp=time.time(),
    )


def decode_stream_frame(frame: Frame, capacity: int = MAX_STREAM_POINTS) -> StreamSample:
    if frame.command != SF40Command.DISTANCE_OUTPUT:
        raise SF40WrongFrameType(frame)
    return decode_stream_payload(frame.payload, capacity)


def read_stream_frame(
    transport, timeout: float = DEFAULT_READ_TIMEOUT, capacity: int = MAX_STREAM_POINTS
) -> StreamSample:
    """Read one frame and decode it as stream telemetry.

    Raises:
        SF40WrongFrameType: the frame was a command response (the exception
                            carries it so the caller can route it)
        SF40FramingError, SF40ChecksumError, SF40BufferOverflow
    """
    return decode_stream_frame(read_frame(transport, timeout=timeout), capacity)


class StreamBuffer:
    """Bounded FIFO of stream samples.

    When full, the oldest sample is dropped to make room and counted in
    `dropped`.
    """

    def __init__(self, maxsize: int = 64):
        self._q: "queue.Queue[StreamSample]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped = 0
        self.received = 0

    def put(self, sample: StreamSample):
        with self._lock:
            self.received += 1
            while True:
                try:
                    self._q.put_nowait(sample)
                    return
                except queue.Full:
                    try:
                        self._q.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> Optional[StreamSample]:
        """Next sample, or None if nothing arrived within `timeout`."""
        try:
            return self._q.get(timeout=timeout) if timeout else self._q.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[StreamSample]:
        out = []
        while True:
            try:
                out.append(self._q.get_nowait())
            except queue.Empty:
                return out

    def __len__(self) -> int:
        return self._q.qsize()


class StreamReader(threading.Thread):
    """Background reader forwarding stream frames into a StreamBuffer.

    The reader takes `lock` for one frame at a time, so a command transaction
    holding the same lock owns the channel for its whole polling window.
    Non-stream frames seen here are passed to `on_other` or dropped.
    """

    def __init__(
        self,
        transport,
        lock,
        buffer: StreamBuffer,
        capacity: int = MAX_STREAM_POINTS,
        poll_interval: float = POLL_INTERVAL,
        on_other=None,
    ):
        super().__init__(name="sf40-stream-reader", daemon=True)
        self.transport = transport
        self.lock = lock
        self.buffer = buffer
        self.capacity = capacity
        self.poll_interval = poll_interval
        self.on_other = on_other
        self.errors = 0
        self._stop_event = threading.Event()

    def stop(self, timeout: float = 1.0):
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)

    def run(self):
        logger.info("Stream reader started")
        while not self._stop_event.is_set():
            with self.lock:
                sample = self._read_one()
            if sample is not None:
                self.buffer.put(sample)
            time.sleep(self.poll_interval)
        logger.info(f"Stream reader stopped ({self.buffer.received} samples, "
                    f"{self.buffer.dropped} dropped, {self.errors} errors)")

    def _read_one(self) -> Optional[StreamSample]:
        if not self.transport.can_read():
            return None
        try:
            return read_stream_frame(self.transport, capacity=self.capacity)
        except SF40WrongFrameType as e:
            if self.on_other is not None:
                self.on_other(e.frame)
            else:
                logger.debug(f"Stream reader dropped {e.frame!r}")
        except (SF40FramingError, SF40ChecksumError, SF40BufferOverflow) as e:
            self.errors += 1
            logger.debug(f"Stream reader discarded packet: {e}")
        return None


class ScanAssembler:
    """Collects consecutive samples of one revolution into a Scan.

    A scan starts at the sample whose start index is 0 and completes once
    `point_total` points of the same revolution index have been seen. Samples
    out of sequence restart assembly.
    """

    def __init__(self):
        self._parts: List[StreamSample] = []
        self._next_index = 0

    def reset(self):
        self._parts = []
        self._next_index = 0

    def add(self, sample: StreamSample) -> Optional[Scan]:
        if sample.point_start_index == 0:
            self.reset()
        elif not self._parts or (
            sample.revolution_index != self._parts[0].revolution_index
            or sample.point_start_index != self._next_index
        ):
            self.reset()
            return None

        self._parts.append(sample)
        self._next_index = sample.point_start_index + sample.point_count
        if self._next_index < sample.point_total:
            return None

        distances = np.concatenate([p.distances for p in self._parts])[: sample.point_total]
        first = self._parts[0]
        scan = Scan(
            revolution_index=first.revolution_index,
            angles=processing.point_angles(first.point_total, first.forward_offset, 0, len(distances)),
            distances=distances,
            timestamp=first.timestamp,
        )
        self.reset()
        return scan
