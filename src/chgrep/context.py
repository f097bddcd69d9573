"""
Context lines around matched rows.

For every match the expander runs up to two small bounded queries, one
for the rows printed above the match and one for the rows printed below
it, and writes them around the match in forward chronological order.
"""

from __future__ import annotations

import logging
import time

from chgrep.config import SearchConfig
from chgrep.output import Row, RowWriter
from chgrep.query import ScanQuery
from chgrep.stream import QueryStream

logger = logging.getLogger("chgrep")


class ContextExpander:
    """Fetches and writes context windows for matched rows.

    Context rows are formatted like matches but never expanded further.
    Queries run one after another on fresh connections.
    """

    def __init__(self, config: SearchConfig, stream: QueryStream, writer: RowWriter):
        self.config = config
        self.stream = stream
        self.writer = writer

    def window(self, row: Row, before: bool) -> list[str]:
        """Fetch the context window on one side of a row.

        Args:
            row: The matched row
            before: True for the window printed above the match

        Returns:
            Raw body lines, oldest first
        """
        count = self.config.before_lines if before else self.config.after_lines
        if count <= 0:
            return []

        start = time.monotonic()
        query = ScanQuery.for_context(self.config, row.timestamp, row.millis, before, count)
        sql = query.sql()
        logger.debug(f"Context query: {sql}")

        lines = self.stream.fetch(sql)
        # Server returns nearest rows first; descending fetches come back newest first.
        if query.descending:
            lines.reverse()

        logger.debug(f"(context calculated for {time.monotonic() - start:.3f}s)")
        return lines

    def emit(self, row: Row, before: bool) -> int:
        """Write one context window; return the number of lines written."""
        lines = self.window(row, before)
        for line in lines:
            if not line.endswith("\n"):
                line += "\n"
            self.writer.write_line(line)
        return len(lines)
