"""
Query builder for chgrep.

Translates search intent into the query text sent to the remote engine.
The table is expected to have the (time, millis, payload...) shape: a
second-resolution ``time`` column, an integer ``millis`` column, and any
number of payload columns.

Example usage:
    from chgrep.query import ScanQuery

    sql = (
        ScanQuery("logs", "message")
        .where("position(message, 'error') <> 0")
        .order_by(desc=True)
        .limit(10)
        .sql()
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chgrep.config import SearchConfig

TIME_COLUMN = "time"
MILLIS_COLUMN = "millis"
OUTPUT_FORMAT = "TabSeparatedRaw"

# Always present so the conjunction is never empty.
BASE_PREDICATE = "1=1"

_ESCAPES = str.maketrans(
    {
        "\0": "\\0",
        "\n": "\\n",
        "\r": "\\r",
        "\\": "\\\\",
        "'": "\\'",
        '"': '\\"',
        "\x1a": "\\Z",
    }
)


def escape(text: str) -> str:
    """Escape text for use inside a single-quoted string literal.

    Only NUL, newline, carriage return, backslash, both quote characters
    and SUB (0x1a) are rewritten; everything else, including undecodable
    bytes carried as surrogates, passes through unchanged.

    Examples:
        >>> escape("it's")
        "it\\\\'s"
        >>> escape("plain")
        'plain'
    """
    return text.translate(_ESCAPES)


def build_predicates(config: SearchConfig) -> list[str]:
    """Build the ordered list of filter predicates for a main scan.

    Each entry is a standalone boolean expression, so joining them with
    AND is always well-formed. Fixed-string and regex search may both be
    given; both predicates are then required.

    Args:
        config: Search configuration

    Returns:
        Predicates, starting with the always-true base predicate
    """
    conds = [BASE_PREDICATE]

    if config.where:
        conds.append(f"({config.where})")

    if config.fixed_string:
        conds.append(f"position({config.text_field}, '{escape(config.fixed_string)}') <> 0")

    if config.regex:
        conds.append(f"match({config.text_field}, '{escape(config.regex)}') = 1")

    if config.before:
        conds.append(f"{TIME_COLUMN} < toDateTime('{escape(config.before)}')")

    if config.after:
        conds.append(f"{TIME_COLUMN} > toDateTime('{escape(config.after)}')")

    return conds


def context_direction(reverse: bool, before: bool) -> tuple[str, bool]:
    """Pick the key comparison and fetch order for a context window.

    "Before" and "after" are relative to the display order: with reverse
    output the lines printed before a match are later in time.

    Args:
        reverse: Whether the main scan is newest-first
        before: True for the window printed above the match

    Returns:
        (comparison operator, descending) so that the server returns the
        rows nearest to the match first
    """
    if reverse == before:
        return ">", False
    return "<", True


class ScanQuery:
    """Fluent builder for one scan query.

    Conditions are ANDed in the order they were added. Nothing is sent
    anywhere; sql() just renders the text.
    """

    def __init__(self, table: str, fields: str):
        """Initialize a query over a table.

        Args:
            table: Table to scan
            fields: Comma-separated payload columns selected after time/millis
        """
        self._table = table
        self._fields = fields
        self._filters: list[str] = []
        self._desc = False
        self._limit_n: int | None = None
        self._settings: dict[str, str | int] = {}

    @classmethod
    def for_search(cls, config: SearchConfig) -> ScanQuery:
        """Create the main scan query for a search configuration."""
        query = cls(config.table, config.fields)
        for cond in build_predicates(config):
            query.where(cond)
        query.order_by(desc=config.reverse)
        if config.limit:
            query.limit(config.limit)
        return query

    @classmethod
    def for_context(
        cls,
        config: SearchConfig,
        timestamp: str,
        millis: int,
        before: bool,
        count: int,
    ) -> ScanQuery:
        """Create a bounded query for the rows adjacent to a match.

        Search filters are not applied: context is the raw neighbourhood
        of the matched row. The server is pinned to one thread so rows
        sharing a key come back in a stable order.

        Args:
            config: Search configuration (table, fields, reverse)
            timestamp: Matched row's time value
            millis: Matched row's millis value
            before: True for the window printed above the match
            count: Number of rows to fetch

        Returns:
            ScanQuery for the context window, nearest rows first
        """
        cmp, desc = context_direction(config.reverse, before)
        ts = escape(timestamp)
        query = cls(config.table, config.fields)
        query.where(
            f"({TIME_COLUMN} = '{ts}' AND {MILLIS_COLUMN} {cmp} {millis}) "
            f"OR ({TIME_COLUMN} {cmp} '{ts}')"
        )
        query.order_by(desc=desc)
        query.limit(count)
        query.setting("max_threads", 1)
        return query

    @property
    def descending(self) -> bool:
        return self._desc

    def where(self, condition: str) -> ScanQuery:
        """Add a raw boolean condition."""
        self._filters.append(condition)
        return self

    def order_by(self, desc: bool = False) -> ScanQuery:
        """Order by (time, millis), newest first if desc."""
        self._desc = desc
        return self

    def limit(self, n: int) -> ScanQuery:
        self._limit_n = n
        return self

    def setting(self, name: str, value: str | int) -> ScanQuery:
        """Add a server-side query setting."""
        self._settings[name] = value
        return self

    def filter_expression(self) -> str:
        """Return the WHERE expression, or the base predicate if empty."""
        if not self._filters:
            return BASE_PREDICATE
        return " AND ".join(self._filters)

    def sql(self) -> str:
        """Render the query text."""
        direction = " DESC" if self._desc else ""
        lines = [
            f"SELECT {TIME_COLUMN},{MILLIS_COLUMN},{self._fields}",
            f"FROM {self._table}",
            f"WHERE {self.filter_expression()}",
            f"ORDER BY {TIME_COLUMN}{direction}, {MILLIS_COLUMN}{direction}",
        ]
        if self._limit_n is not None:
            lines.append(f"LIMIT {self._limit_n}")
        if self._settings:
            rendered = ", ".join(f"{k}={v}" for k, v in self._settings.items())
            lines.append(f"SETTINGS {rendered}")
        lines.append(f"FORMAT {OUTPUT_FORMAT}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.sql()
