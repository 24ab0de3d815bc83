"""Raw byte logger for serial I/O inspection

Captures ALL serial communication without filtering or validation.
Like `tee` in Unix - logs everything passing through.

Used for:
- Protocol debugging
- Device response analysis
- Troubleshooting desynchronised streams
"""

from datetime import datetime, timezone
from pathlib import Path

from . import protocol
from .commands import SF40Command


def describe_frame(data: bytes) -> str:
    """One-line interpretation of bytes that start with an SF40 frame."""
    try:
        frame = protocol.parse_frame(data)
    except protocol.SF40FramingError as e:
        return f"no frame ({e.reason})"
    except protocol.SF40ChecksumError as e:
        return str(e)
    try:
        name = SF40Command(frame.command).name
    except ValueError:
        name = f"UNKNOWN_{frame.command}"
    kind = "WRITE" if frame.write else "READ"
    return f"{kind} {name} ({len(frame.payload)} payload bytes)"


class ByteDumpLogger:
    """Log raw serial I/O for protocol analysis.

    Creates two files:
    - .dump: Binary dump of all I/O
    - .dump.txt: Human-readable hex/decimal format

    NO validation, NO filtering - pure data capture. Sends are labelled with
    the decoded request; receives arrive in reader-sized chunks and are
    dumped as-is.
    """

    @staticmethod
    def _iso_timestamp() -> str:
        """UTC ISO-8601 timestamp with millisecond precision."""
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def __init__(self, base_path: str):
        """Initialize byte logger.

        Args:
            base_path: Base path for log files (without extension)
                      Creates: {base_path}.dump and {base_path}.dump.txt
        """
        self.base_path = Path(base_path)
        self.binary_file = open(f"{base_path}.dump", "wb")
        self.text_file = open(f"{base_path}.dump.txt", "w")

        self.text_file.write(f"SF40 Serial I/O Dump - {self._iso_timestamp()}\n")
        self.text_file.write("=" * 70 + "\n\n")
        self.text_file.flush()

    def _write_rows(self, data: bytes):
        for label, fmt in (("HEX", "{:02x} "), ("DEC", "{:3d} ")):
            self.text_file.write(f"  {label}: ")
            for i, byte in enumerate(data):
                self.text_file.write(fmt.format(byte))
                if (i + 1) % 16 == 0 and i < len(data) - 1:
                    self.text_file.write("\n       ")
            self.text_file.write("\n")

    def log_send(self, data: bytes, description: str = ""):
        """Log outgoing bytes to device.

        Args:
            data: Bytes sent to device
            description: Optional description; defaults to the decoded frame
        """
        self.binary_file.write(b">>> SEND " + data + b"\n")
        self.binary_file.flush()

        self.text_file.write(f"[{self._iso_timestamp()}] SEND ({len(data)} bytes)")
        self.text_file.write(f": {description or describe_frame(data)}\n")
        self._write_rows(data)
        self.text_file.write("\n")
        self.text_file.flush()

    def log_recv(self, data: bytes):
        """Log incoming bytes from device."""
        if not data:
            return

        self.binary_file.write(b"<<< RECV " + data + b"\n")
        self.binary_file.flush()

        self.text_file.write(f"[{self._iso_timestamp()}] RECV ({len(data)} bytes)\n")
        self._write_rows(data)
        self.text_file.write("\n")
        self.text_file.flush()

    def log_error(self, message: str):
        self.text_file.write(f"[{self._iso_timestamp()}] ERROR: {message}\n\n")
        self.text_file.flush()

    def close(self):
        """Close log files."""
        if self.binary_file:
            self.binary_file.close()
        if self.text_file:
            self.text_file.write(f"\nLog closed: {self._iso_timestamp()}\n")
            self.text_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
