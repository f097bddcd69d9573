"""
Progress notifications sent by the query service in the header block.
"""

from __future__ import annotations

import json
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, TextIO

from chgrep.errors import ProtocolError

PROGRESS_HEADER = "X-ClickHouse-Progress: "
CLEAR_LINE = "\033[2K\r"
GIB = 1 << 30


@dataclass(frozen=True)
class Progress:
    """One progress snapshot for a running query."""

    read_rows: int = 0
    read_bytes: int = 0
    written_rows: int = 0
    written_bytes: int = 0
    total_rows_to_read: int = 0

    @classmethod
    def parse(cls, data: str) -> Progress:
        """Decode the JSON value of a progress header.

        Counters arrive as numeric strings. Missing counters default to 0;
        anything other than a numeric string is a ProtocolError.
        """
        try:
            obj = json.loads(data)
            if not isinstance(obj, dict):
                raise ValueError(f"expected an object, got {type(obj).__name__}")
            return cls(
                read_rows=_counter(obj, "read_rows"),
                read_bytes=_counter(obj, "read_bytes"),
                written_rows=_counter(obj, "written_rows"),
                written_bytes=_counter(obj, "written_bytes"),
                total_rows_to_read=_counter(obj, "total_rows_to_read"),
            )
        except (ValueError, TypeError) as e:
            raise ProtocolError(f"unmarshalling {data!r}: {e}", raw=data) from e

    @property
    def percent(self) -> float:
        """Rows read as a percentage of the expected total (nan/inf when total is 0)."""
        if self.total_rows_to_read == 0:
            return float("nan") if self.read_rows == 0 else float("inf")
        return self.read_rows / self.total_rows_to_read * 100


def _counter(obj: dict[str, Any], key: str) -> int:
    # Counters are 64-bit values the server sends as JSON strings.
    value = obj.get(key, "0")
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a numeric string, got {value!r}")
    return int(value)


class ProgressReporter:
    """Renders progress on a single, overwritten diagnostic line."""

    def __init__(
        self,
        stream: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._stream = stream
        self._clock = clock
        self._started = clock()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def start(self) -> None:
        """Reset the throughput clock at the start of a scan."""
        self._started = self._clock()

    def format(self, progress: Progress) -> str:
        elapsed = max(self._clock() - self._started, 1e-9)
        read = progress.read_bytes / GIB
        per_sec = progress.read_bytes / elapsed / GIB
        return (
            f"Progress: {progress.percent:.0f}% "
            f"(read {read:.2f} GiB so far, {per_sec:.2f} GiB/sec)"
        )

    def report(self, progress: Progress) -> None:
        self.stream.write(CLEAR_LINE + self.format(progress))
        self.stream.flush()

    def clear(self) -> None:
        """Blank the progress line once rows start streaming."""
        self.stream.write(CLEAR_LINE)
        self.stream.flush()
