"""End-to-end tests for scanning and context expansion against the fake service."""

import io

import pytest

from chgrep.config import SearchConfig
from chgrep.context import ContextExpander
from chgrep.output import Row, RowWriter
from chgrep.scan import Scanner
from chgrep.stream import QueryStream

from conftest import TableEngine

T = "2024-01-01 00:00:00"


@pytest.fixture
def five_rows():
    """Five rows in one second; only the middle one matches "needle"."""
    return [
        (T, 100, "one"),
        (T, 200, "two"),
        (T, 300, "needle"),
        (T, 400, "four"),
        (T, 500, "five"),
    ]


class TestScan:
    """Tests for the main scan without context."""

    def test_reverse_order(self, fake_clickhouse, sample_rows, scan_output):
        """Default ordering is newest first."""
        fake_clickhouse.responder = TableEngine(sample_rows)
        out, last = scan_output()
        assert out == (
            f"{T}.700\tgamma error\n"
            f"{T}.600\tbeta\n"
            f"{T}.500\talpha error\n"
        )
        assert last == Row(T, 500, "alpha error\n")

    def test_forward_order(self, fake_clickhouse, sample_rows, scan_output):
        fake_clickhouse.responder = TableEngine(sample_rows)
        out, last = scan_output(reverse=False)
        assert out.splitlines()[0] == f"{T}.500\talpha error"
        assert last.millis == 700

    def test_fixed_string_filter(self, fake_clickhouse, sample_rows, scan_output):
        fake_clickhouse.responder = TableEngine(sample_rows)
        out, _ = scan_output(fixed_string="error")
        assert "beta" not in out
        assert out.count("\n") == 2

    def test_no_rows(self, fake_clickhouse, scan_output):
        """An empty result writes nothing and reports no last row."""
        out, last = scan_output(fixed_string="missing")
        assert out == ""
        assert last is None

    def test_error_body_passed_through(self, fake_clickhouse, scan_output):
        """A plain-text server error reaches the output unchanged."""
        message = "Code: 60. DB::Exception: Table default.amazon doesn't exist.\n"
        fake_clickhouse.responder = lambda q: ([], message.encode())
        out, last = scan_output()
        assert out == message
        assert last is None

    def test_idempotent(self, fake_clickhouse, sample_rows, scan_output):
        """Running the same scan twice gives identical output."""
        fake_clickhouse.responder = TableEngine(sample_rows)
        first, _ = scan_output(fixed_string="error", before_lines=1, after_lines=1)
        second, _ = scan_output(fixed_string="error", before_lines=1, after_lines=1)
        assert first == second

    def test_one_connection_per_query(self, fake_clickhouse, sample_rows, scan_output):
        """Each match triggers its own before/after queries, in order."""
        fake_clickhouse.responder = TableEngine(sample_rows)
        scan_output(fixed_string="error", before_lines=1, after_lines=1)
        queries = fake_clickhouse.queries
        assert len(queries) == 5
        assert "position(" in queries[0]
        assert all("max_threads=1" in q for q in queries[1:])
        assert "millis > 700" in queries[1]
        assert "millis < 700" in queries[2]
        assert "millis > 500" in queries[3]
        assert "millis < 500" in queries[4]


class TestContext:
    """Tests for context windows around matches."""

    def test_example_reverse(self, fake_clickhouse, sample_rows, scan_output):
        """One line each side, newest first: 600 follows 700 and precedes 500."""
        fake_clickhouse.responder = TableEngine(sample_rows)
        out, _ = scan_output(fixed_string="error", before_lines=1, after_lines=1)
        assert out == (
            f"{T}.700\tgamma error\n"
            f"{T}.600\tbeta\n"
            "---\n"
            f"{T}.600\tbeta\n"
            f"{T}.500\talpha error\n"
            "---\n"
        )

    def test_forward_windows_read_forward(self, fake_clickhouse, five_rows, scan_output):
        """With forward ordering both windows read oldest to newest."""
        fake_clickhouse.responder = TableEngine(five_rows)
        out, _ = scan_output(fixed_string="needle", before_lines=2, after_lines=2, reverse=False)
        millis = [line.split("\t")[0][-3:] for line in out.splitlines()[:-1]]
        assert millis == ["100", "200", "300", "400", "500"]
        assert out.endswith("---\n")

    def test_reverse_windows_read_forward(self, fake_clickhouse, five_rows, scan_output):
        """With reverse ordering each window is still in forward time order."""
        fake_clickhouse.responder = TableEngine(five_rows)
        out, _ = scan_output(fixed_string="needle", before_lines=2, after_lines=2)
        millis = [line.split("\t")[0][-3:] for line in out.splitlines()[:-1]]
        assert millis == ["400", "500", "300", "100", "200"]

    def test_before_only(self, fake_clickhouse, five_rows, scan_output):
        fake_clickhouse.responder = TableEngine(five_rows)
        out, _ = scan_output(fixed_string="needle", before_lines=1, reverse=False)
        assert out == f"{T}.200\ttwo\n{T}.300\tneedle\n---\n"

    def test_context_crosses_seconds(self, fake_clickhouse, scan_output):
        """Neighbours in adjacent seconds are found by the time comparison."""
        rows = [
            ("2024-01-01 00:00:01", 900, "prev"),
            ("2024-01-01 00:00:02", 0, "hit"),
            ("2024-01-01 00:00:03", 10, "next"),
        ]
        fake_clickhouse.responder = TableEngine(rows)
        out, _ = scan_output(fixed_string="hit", before_lines=1, after_lines=1, reverse=False)
        assert out.splitlines() == [
            "2024-01-01 00:00:01.900\tprev",
            "2024-01-01 00:00:02.000\thit",
            "2024-01-01 00:00:03.010\tnext",
            "---",
        ]

    def test_separator_even_when_windows_empty(self, fake_clickhouse, scan_output):
        """A lone match with context requested is still followed by a separator.

        The separator depends only on -A/-B/-C being set, not on whether
        either window returned rows.
        """
        fake_clickhouse.responder = TableEngine([(T, 1, "only")])
        out, _ = scan_output(before_lines=3, after_lines=3)
        assert out == f"{T}.001\tonly\n---\n"

    def test_no_separator_without_context(self, fake_clickhouse, sample_rows, scan_output):
        fake_clickhouse.responder = TableEngine(sample_rows)
        out, _ = scan_output(fixed_string="error")
        assert "---" not in out


class TestContextExpander:
    """Unit tests for ContextExpander with a stubbed stream."""

    class StubStream:
        def __init__(self, lines):
            self.lines = lines
            self.queries = []

        def fetch(self, query):
            self.queries.append(query)
            return list(self.lines)

    def test_descending_fetch_is_reversed(self):
        """Rows fetched newest first are returned oldest first."""
        stream = self.StubStream([f"{T}\t2\tb\n", f"{T}\t1\ta\n"])
        config = SearchConfig(reverse=False, before_lines=2)
        expander = ContextExpander(config, stream, RowWriter(io.BytesIO()))
        lines = expander.window(Row(T, 3, "c"), before=True)
        assert lines == [f"{T}\t1\ta\n", f"{T}\t2\tb\n"]
        assert "ORDER BY time DESC" in stream.queries[0]

    def test_ascending_fetch_kept(self):
        stream = self.StubStream([f"{T}\t4\td\n", f"{T}\t5\te\n"])
        config = SearchConfig(reverse=False, after_lines=2)
        expander = ContextExpander(config, stream, RowWriter(io.BytesIO()))
        assert expander.window(Row(T, 3, "c"), before=False) == stream.lines

    def test_zero_count_skips_query(self):
        stream = self.StubStream([])
        expander = ContextExpander(SearchConfig(), stream, RowWriter(io.BytesIO()))
        assert expander.window(Row(T, 3, "c"), before=True) == []
        assert stream.queries == []

    def test_emit_terminates_last_line(self):
        """A window whose last line lacks a newline is still written as a full line."""
        stream = self.StubStream(["not a row"])
        buf = io.BytesIO()
        expander = ContextExpander(SearchConfig(after_lines=1), stream, RowWriter(buf))
        assert expander.emit(Row(T, 3, "c"), before=False) == 1
        assert buf.getvalue() == b"not a row\n"


class TestScanner:
    """Tests for Scanner wiring."""

    def test_query_uses_config(self):
        scanner = Scanner(SearchConfig(table="logs", limit=5), QueryStream("h:1"))
        sql = scanner.query().sql()
        assert "FROM logs" in sql
        assert "LIMIT 5" in sql

    def test_context_stream_has_no_reporter(self):
        from chgrep.progress import ProgressReporter

        stream = QueryStream("h:1", reporter=ProgressReporter())
        scanner = Scanner(SearchConfig(), stream)
        assert scanner.expander.stream.reporter is None
