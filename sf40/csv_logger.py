"""Per-transaction CSV log.

`protocol.request` writes one row per request/response exchange; the columns
are listed in COLUMNS. scripts/plot_scan.py reads this file back.
"""

from __future__ import annotations

import csv
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

COLUMNS = [
    "session_start",
    "timestamp",
    "elapsed_s",
    "phase",
    "operation",
    "command",
    "direction",
    "duration_ms",
    "bytes_transferred",
    "cumulative_bytes",
    "throughput_kbps",
    "rejected_frames",
    "state",
    "response_type",
]


class CSVLogger:
    """Append SF40 transactions to a CSV file (overwritten on open).

    Each row is flushed immediately so a log survives a crashed session.
    """

    def __init__(self, csv_path: str):
        self.csv_path = Path(csv_path)
        self._file = open(self.csv_path, "w", newline="")
        self._writer = csv.writer(self._file)
        self._writer.writerow(COLUMNS)

        self.started = time.time()
        self.session_start = datetime.fromtimestamp(self.started).strftime("%Y-%m-%d %H:%M:%S")
        self.cumulative_bytes = 0

    def log_operation(
        self,
        phase: str,
        operation: str,
        duration_ms: float,
        command: Optional[int] = None,
        direction: str = "R",
        bytes_transferred: int = 0,
        rejected_frames: int = 0,
        state: str = "COMPLETE",
        response_type: str = "",
    ):
        """Record one transaction.

        `phase` is the caller's grouping (read, write, info...), `operation`
        the command name. `bytes_transferred` counts the request plus every
        accepted frame; `rejected_frames` counts packets discarded on
        framing or checksum errors. `state` is COMPLETE, TIMEOUT or
        CANCELLED; `response_type` DATA, ACK or NONE.
        """
        self.cumulative_bytes += bytes_transferred
        kbps = (bytes_transferred / 1024) / (duration_ms / 1000) if duration_ms > 0 else 0

        self._writer.writerow(
            [
                self.session_start,
                datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
                f"{time.time() - self.started:.3f}",
                phase,
                operation,
                "" if command is None else command,
                direction,
                f"{duration_ms:.1f}",
                bytes_transferred,
                self.cumulative_bytes,
                f"{kbps:.2f}",
                rejected_frames,
                state,
                response_type,
            ]
        )
        self._file.flush()

    def close(self):
        if not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
