"""SF40 driver: session object over the transport-based protocol.

One LightwareSF40 owns one transport. Every transaction and every stream
frame read takes the session lock, so concurrent callers are serialised and
responses can never be matched to the wrong request.
"""

from __future__ import annotations

import logging
import struct
import threading
import time
from typing import Any, Dict, Optional, Union

from . import protocol
from .commands import (
    AlarmConfig,
    BaudRate,
    DistanceWindow,
    SF40Command,
    StreamMode,
    alarm_command,
    get_spec,
)
from .protocol import (
    DEFAULT_TIMEOUT,
    POLL_INTERVAL,
    Frame,
    SF40BufferOverflow,
    SF40ChecksumError,
    SF40DeviceError,
    SF40FramingError,
    SF40TimeoutError,
    SF40WrongFrameType,
)
from .stream import (
    MAX_STREAM_POINTS,
    Scan,
    ScanAssembler,
    StreamBuffer,
    StreamReader,
    StreamSample,
    decode_stream_frame,
    read_stream_frame,
)
from .transport import MockTransport, SerialTransport

logger = logging.getLogger(__name__)


def _command_name(command: int) -> str:
    try:
        return SF40Command(command).name
    except ValueError:
        return f"CMD {command}"


def _reader(command: SF40Command, doc: str):
    def getter(self, **kwargs):
        return self.read_command(command, **kwargs)

    getter.__name__ = f"get_{command.name.lower()}"
    getter.__doc__ = doc
    return getter


def _writer(command: SF40Command, doc: str):
    def setter(self, value, verify: bool = False, **kwargs):
        self.write_command(command, value, verify=verify, **kwargs)

    setter.__name__ = f"set_{command.name.lower()}"
    setter.__doc__ = doc
    return setter


class LightwareSF40:
    """LightWare SF40/c session.

    Args:
        transport: TransportBase instance (SerialTransport or MockTransport)
        timeout: Default transaction time budget in seconds
        poll_interval: Sleep between receive polls
        csv_logger: Optional CSVLogger; one row per transaction
        keep_stream_frames: Queue stream frames that arrive during a command
                            transaction instead of dropping them
        stream_buffer_size: Samples kept before the oldest is dropped
        stream_capacity: Max points accepted per stream frame
    """

    def __init__(
        self,
        transport,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        csv_logger=None,
        keep_stream_frames: bool = True,
        stream_buffer_size: int = 64,
        stream_capacity: int = MAX_STREAM_POINTS,
    ):
        self.transport = transport
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.csv_logger = csv_logger
        self.keep_stream_frames = keep_stream_frames
        self.stream_capacity = stream_capacity
        self.stream_buffer = StreamBuffer(stream_buffer_size)
        self.lock = threading.RLock()
        self._reader: Optional[StreamReader] = None
        self._assembler = ScanAssembler()

    @classmethod
    def from_settings(cls, settings, byte_logger=None, csv_logger=None, **kwargs) -> "LightwareSF40":
        """Open a session from SF40Settings (mock or serial)."""
        if settings.mock:
            transport = MockTransport(auto_respond=True, byte_logger=byte_logger)
            logger.info("SF40 session using MockTransport")
        else:
            transport = SerialTransport(
                port=settings.port, baudrate=settings.baudrate, byte_logger=byte_logger
            )
        return cls(
            transport,
            timeout=settings.timeout,
            poll_interval=settings.poll_interval,
            csv_logger=csv_logger,
            **kwargs,
        )

    def close(self):
        self.stop_stream_reader()
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def flush(self):
        """Discard unread bytes in the receive buffer."""
        with self.lock:
            self.transport.reset_input_buffer()

    # --- transactions -------------------------------------------------------

    def _on_unmatched(self, frame: Frame):
        if self.keep_stream_frames and frame.command == SF40Command.DISTANCE_OUTPUT:
            try:
                self.stream_buffer.put(decode_stream_frame(frame, self.stream_capacity))
            except (SF40FramingError, SF40BufferOverflow) as e:
                logger.debug(f"Discarding stream frame seen during transaction: {e}")
            return
        logger.debug(f"Dropping unmatched frame {frame!r}")

    def request(
        self,
        command: int,
        payload: bytes = b"",
        write: bool = False,
        timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        cancel_event=None,
        phase: str = "operation",
    ) -> Frame:
        """Run one transaction while holding the session lock."""
        with self.lock:
            return protocol.request(
                self.transport,
                command,
                payload,
                write=write,
                timeout=self.timeout if timeout is None else timeout,
                poll_interval=self.poll_interval,
                deadline=deadline,
                cancel_event=cancel_event,
                on_unmatched=self._on_unmatched,
                csv_logger=self.csv_logger,
                name=_command_name(command),
                phase=phase,
            )

    def read_command(self, command: int, **kwargs) -> Any:
        """Read a command and decode its payload with the table's decoder.

        Raises:
            ValueError: command is write-only
            SF40TimeoutError: no response
            SF40DeviceError: response payload could not be decoded
        """
        spec = get_spec(command)
        if not spec.readable or spec.decode is None:
            raise ValueError(f"{spec.command.name} cannot be read")
        frame = self.request(spec.command, phase="read", **kwargs)
        if len(frame.payload) < spec.read_size:
            raise SF40DeviceError(
                f"{spec.command.name} response has {len(frame.payload)} bytes, "
                f"expected {spec.read_size}"
            )
        try:
            return spec.decode(frame.payload)
        except (ValueError, IndexError, struct.error) as e:
            raise SF40DeviceError(f"Cannot decode {spec.command.name}: {e}") from e

    def write_command(self, command: int, value: Any, verify: bool = False, **kwargs) -> None:
        """Encode and write a value; the echo with the same command id acks it.

        The acknowledgment payload is not checked. With verify=True the value
        is read back afterwards and compared (readable, symmetric commands only).

        Raises:
            ValueError: command is read-only or value does not encode
            SF40TimeoutError: no acknowledgment
            SF40DeviceError: read-back differs from the written value
        """
        spec = get_spec(command)
        if not spec.writable:
            raise ValueError(f"{spec.command.name} cannot be written")
        try:
            payload = spec.encode(value) if spec.encode else bytes(value)
        except (OverflowError, struct.error) as e:
            raise ValueError(f"Cannot encode {value!r} for {spec.command.name}: {e}") from e
        if len(payload) != spec.write_size:
            raise ValueError(
                f"{spec.command.name} takes {spec.write_size} bytes, got {len(payload)}"
            )
        if verify and not (spec.readable and spec.read_size == spec.write_size):
            raise ValueError(f"{spec.command.name} cannot be verified by reading back")

        self.request(spec.command, payload, write=True, phase="write", **kwargs)

        if verify:
            current = self.read_command(spec.command, **kwargs)
            expected = spec.decode(payload)
            if current != expected:
                raise SF40DeviceError(
                    f"{spec.command.name} read back {current!r}, wrote {expected!r}"
                )

    # --- typed accessors ----------------------------------------------------

    get_product_name = _reader(SF40Command.PRODUCT_NAME, "Product name, e.g. 'SF40'.")
    get_hardware_version = _reader(SF40Command.HARDWARE_VERSION, "Hardware version number.")
    get_firmware_version = _reader(SF40Command.FIRMWARE_VERSION, "Firmware version (FirmwareVersion).")
    get_serial_number = _reader(SF40Command.SERIAL_NUMBER, "Serial number string.")
    get_user_data = _reader(SF40Command.USER_DATA, "16 bytes of user data.")
    set_user_data = _writer(SF40Command.USER_DATA, "Store up to 16 bytes of user data.")
    get_token = _reader(SF40Command.TOKEN, "Single-use token for save/reset.")
    get_incoming_voltage = _reader(SF40Command.INCOMING_VOLTAGE, "Supply voltage in volts.")
    get_stream_mode = _reader(SF40Command.STREAM, "Current StreamMode.")
    get_laser_firing = _reader(SF40Command.LASER_FIRING, "True if the laser is firing.")
    set_laser_firing = _writer(SF40Command.LASER_FIRING, "Enable or disable the laser.")
    get_temperature = _reader(SF40Command.TEMPERATURE, "Temperature in degrees Celsius.")
    get_distance = _reader(SF40Command.DISTANCE, "DistanceReading for the configured sector.")
    set_distance_window = _writer(SF40Command.DISTANCE, "Configure the distance sector (DistanceWindow).")
    get_motor_state = _reader(SF40Command.MOTOR_STATE, "MotorState of the scanning head.")
    get_motor_voltage = _reader(SF40Command.MOTOR_VOLTAGE, "Motor voltage in volts.")
    get_output_rate = _reader(SF40Command.OUTPUT_RATE, "Stream OutputRate.")
    set_output_rate = _writer(SF40Command.OUTPUT_RATE, "Set the stream OutputRate.")
    get_forward_offset = _reader(SF40Command.FORWARD_OFFSET, "Forward offset in degrees.")
    set_forward_offset = _writer(SF40Command.FORWARD_OFFSET, "Set the forward offset in degrees.")
    get_revolutions = _reader(SF40Command.REVOLUTIONS, "Revolution counter (wraps at 2**32).")
    get_alarm_state = _reader(SF40Command.ALARM_STATE, "AlarmState bitfield.")

    def get_alarm(self, alarm: int, **kwargs) -> AlarmConfig:
        return self.read_command(alarm_command(alarm), **kwargs)

    def set_alarm(self, alarm: int, config: AlarmConfig, verify: bool = False, **kwargs):
        self.write_command(alarm_command(alarm), config, verify=verify, **kwargs)

    def save_parameters(self, **kwargs):
        """Persist the current settings. Fetches a fresh token first."""
        token = self.get_token(**kwargs)
        self.write_command(SF40Command.SAVE_PARAMETERS, token, **kwargs)
        logger.info("SF40 parameters saved")

    def reset(self, **kwargs):
        """Restart the device. Fetches a fresh token first."""
        token = self.get_token(**kwargs)
        self.write_command(SF40Command.RESET, token, **kwargs)
        self._assembler.reset()
        logger.info("SF40 reset requested")

    def set_baud_rate(self, rate: Union[BaudRate, int], **kwargs):
        """Switch the device baud rate, then the transport's.

        Accepts a BaudRate or a rate in bits per second. The new rate only
        survives a power cycle after save_parameters().
        """
        if not isinstance(rate, BaudRate):
            rate = BaudRate(rate) if rate in {r.value for r in BaudRate} else BaudRate.from_bps(rate)
        with self.lock:
            self.write_command(SF40Command.BAUD_RATE, rate, **kwargs)
            self.transport.set_baudrate(rate.bps)
        logger.info(f"SF40 baud rate set to {rate.bps}")

    def info(self) -> Dict[str, Any]:
        """Snapshot of identification and health readings."""
        return {
            "product_name": self.get_product_name(),
            "hardware_version": self.get_hardware_version(),
            "firmware_version": str(self.get_firmware_version()),
            "serial_number": self.get_serial_number(),
            "incoming_voltage": round(self.get_incoming_voltage(), 2),
            "temperature": self.get_temperature(),
            "motor_state": self.get_motor_state().name,
            "motor_voltage": self.get_motor_voltage(),
            "output_rate": self.get_output_rate().points_per_second,
            "forward_offset": self.get_forward_offset(),
            "revolutions": self.get_revolutions(),
        }

    # --- streaming ----------------------------------------------------------

    def set_streaming(self, enabled: bool, **kwargs):
        mode = StreamMode.DISTANCE if enabled else StreamMode.DISABLED
        self.write_command(SF40Command.STREAM, mode, **kwargs)
        if not enabled:
            self._assembler.reset()
        logger.info(f"SF40 streaming {'enabled' if enabled else 'disabled'}")

    def read_stream_sample(self, timeout: Optional[float] = None) -> StreamSample:
        """Next stream sample.

        Samples queued by the background reader or during earlier
        transactions are returned first. Otherwise frames are read until a
        stream frame arrives; command responses and malformed packets are
        skipped.

        Raises:
            SF40TimeoutError: no sample within `timeout` (default: session timeout)
        """
        timeout = self.timeout if timeout is None else timeout
        if self._reader is not None:
            sample = self.stream_buffer.get(timeout=timeout)
            if sample is None:
                raise SF40TimeoutError("No stream sample from background reader")
            return sample

        sample = self.stream_buffer.get()
        if sample is not None:
            return sample

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self.lock:
                if self.transport.can_read():
                    try:
                        return read_stream_frame(
                            self.transport,
                            timeout=max(deadline - time.monotonic(), self.poll_interval),
                            capacity=self.stream_capacity,
                        )
                    except SF40WrongFrameType as e:
                        logger.debug(f"Skipping non-stream frame {e.frame!r}")
                    except (SF40FramingError, SF40ChecksumError, SF40BufferOverflow) as e:
                        logger.debug(f"Skipping bad stream packet: {e}")
            time.sleep(self.poll_interval)
        raise SF40TimeoutError("No stream sample received")

    def start_stream_reader(self) -> StreamReader:
        """Drain stream frames in a background thread into stream_buffer."""
        if self._reader is not None and self._reader.is_alive():
            return self._reader
        self._reader = StreamReader(
            self.transport,
            self.lock,
            self.stream_buffer,
            capacity=self.stream_capacity,
            poll_interval=self.poll_interval,
        )
        self._reader.start()
        return self._reader

    def stop_stream_reader(self):
        if self._reader is not None:
            self._reader.stop()
            self._reader = None

    def get_scan(self, timeout: float = 2.0) -> Scan:
        """Collect stream samples until one full revolution is assembled.

        Streaming must already be enabled.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SF40TimeoutError("No complete revolution received")
            scan = self._assembler.add(self.read_stream_sample(timeout=remaining))
            if scan is not None:
                return scan
