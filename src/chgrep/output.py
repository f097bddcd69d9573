"""
Row parsing and display formatting.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import BinaryIO

SEPARATOR = "---"


@dataclass(frozen=True)
class Row:
    """One event row: (time, millis) key plus the tab-joined payload columns."""

    timestamp: str
    millis: int
    payload: str


def parse_row(line: str) -> Row | None:
    """Parse a tab-separated body line.

    Returns None for lines with fewer than three fields; callers print
    those verbatim. An unparsable millis field is treated as 0.
    """
    parts = line.split("\t", 2)
    if len(parts) < 3:
        return None
    timestamp, millis_str, rest = parts
    try:
        millis = int(millis_str)
    except ValueError:
        millis = 0
    return Row(timestamp=timestamp, millis=millis, payload=rest)


def format_row(row: Row) -> str:
    """Render a row as "<time>.<millis>\\t<payload>".

    Tabs inside the payload become spaces so the output has exactly one
    tab per line; trailing whitespace (including the newline) is dropped.
    """
    payload = row.payload.replace("\t", " ").rstrip()
    return f"{row.timestamp}.{row.millis:03d}\t{payload}\n"


class RowWriter:
    """Writes result lines to a binary stream (stdout by default).

    Text is encoded with surrogateescape so undecodable input bytes are
    written back exactly. Each write is flushed for live consumers.
    """

    def __init__(self, stream: BinaryIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> BinaryIO:
        return self._stream if self._stream is not None else sys.stdout.buffer

    def write(self, text: str) -> None:
        self.stream.write(text.encode("utf-8", "surrogateescape"))
        self.stream.flush()

    def write_line(self, line: str) -> Row | None:
        """Write a body line, formatted if it parses as a row.

        Returns the parsed row, or None if the line was passed through.
        """
        row = parse_row(line)
        if row is None:
            self.write(line)
            return None
        self.write_row(row)
        return row

    def write_row(self, row: Row) -> None:
        self.write(format_row(row))

    def separator(self) -> None:
        self.write(SEPARATOR + "\n")
