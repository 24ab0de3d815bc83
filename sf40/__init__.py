"""SF40 lidar protocol library - clean, testable implementation.

Pure-Python protocol implementation for the LightWare SF40/c scanning lidar.
Uses transport abstraction: SerialTransport for hardware, MockTransport for
tests and mock-device runs.
"""

from .driver import LightwareSF40
from .transport import SerialTransport, MockTransport
from .csv_logger import CSVLogger
from .protocol import (
    SF40Error,
    SF40FramingError,
    SF40ChecksumError,
    SF40TimeoutError,
    SF40CancelledError,
    SF40WrongFrameType,
    SF40BufferOverflow,
    SF40DeviceError,
)

__all__ = [
    "LightwareSF40",
    "SerialTransport",
    "MockTransport",
    "CSVLogger",
    "SF40Error",
    "SF40FramingError",
    "SF40ChecksumError",
    "SF40TimeoutError",
    "SF40CancelledError",
    "SF40WrongFrameType",
    "SF40BufferOverflow",
    "SF40DeviceError",
]
__version__ = "0.1.0"
