"""
Main scan: run the search query and write results with their context.
"""

from __future__ import annotations

import logging
from contextlib import closing

from chgrep.config import SearchConfig
from chgrep.context import ContextExpander
from chgrep.output import Row, RowWriter, parse_row
from chgrep.query import ScanQuery
from chgrep.stream import QueryStream

logger = logging.getLogger("chgrep")


class Scanner:
    """Runs one scan for a fixed configuration.

    Rows are written in exactly the order the server returns them. When
    context is requested, each match's windows are fetched and written
    before the next row is read from the main stream.
    """

    def __init__(
        self,
        config: SearchConfig,
        stream: QueryStream,
        writer: RowWriter | None = None,
    ):
        self.config = config
        self.stream = stream
        self.writer = writer or RowWriter()
        self.expander = ContextExpander(config, stream.without_progress(), self.writer)

    def query(self) -> ScanQuery:
        return ScanQuery.for_search(self.config)

    def run(self) -> Row | None:
        """Execute the scan.

        Returns:
            The last row read from the main stream, or None if no rows
            were returned
        """
        sql = self.query().sql()
        logger.debug(f"Executed query: {sql}")

        last = None
        with closing(self.stream.execute(sql)) as lines:
            for line in lines:
                row = parse_row(line)
                if row is None:
                    self.writer.write(line)
                    continue

                last = row
                self._write_match(row)

        return last

    def _write_match(self, row: Row) -> None:
        if self.config.before_lines > 0:
            self.expander.emit(row, before=True)

        self.writer.write_row(row)

        if self.config.after_lines > 0:
            self.expander.emit(row, before=False)

        if self.config.context_requested:
            self.writer.separator()


def run_scan(config: SearchConfig, stream: QueryStream, writer: RowWriter | None = None) -> Row | None:
    """Run a single scan for config; return the last main-stream row."""
    return Scanner(config, stream, writer).run()
