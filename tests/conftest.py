"""Shared fixtures for chgrep tests."""

import io
import json
import re
import shutil
import socketserver
import tempfile
import threading
from pathlib import Path
from urllib.parse import parse_qsl, urlsplit

import pytest

from chgrep.config import SearchConfig
from chgrep.output import RowWriter
from chgrep.scan import run_scan
from chgrep.stream import QueryStream

# ============================================================================
# Fake query service
# ============================================================================


def progress_header(read_rows, read_bytes, total_rows, written_rows=0, written_bytes=0):
    """Build an X-ClickHouse-Progress header line."""
    data = {
        "read_rows": str(read_rows),
        "read_bytes": str(read_bytes),
        "written_rows": str(written_rows),
        "written_bytes": str(written_bytes),
        "total_rows_to_read": str(total_rows),
    }
    return "X-ClickHouse-Progress: " + json.dumps(data, separators=(",", ":"))


class TableEngine:
    """Answers generated queries from an in-memory (time, millis, payload) table.

    Understands just enough of the query text chgrep produces: substring
    and regex search, time bounds, context key comparisons, ordering and
    LIMIT. Test strings must not need escaping.
    """

    def __init__(self, rows, progress=None):
        self.rows = list(rows)
        self.progress = list(progress or [])

    def select(self, query):
        rows = list(self.rows)

        m = re.search(r"position\(\w+, '(.*?)'\) <> 0", query)
        if m:
            rows = [r for r in rows if m.group(1) in r[2]]

        m = re.search(r"match\(\w+, '(.*?)'\) = 1", query)
        if m:
            pattern = re.compile(m.group(1))
            rows = [r for r in rows if pattern.search(r[2])]

        m = re.search(r"time > toDateTime\('(.*?)'\)", query)
        if m and not m.group(1).isdigit():
            rows = [r for r in rows if r[0] > m.group(1)]

        m = re.search(r"time < toDateTime\('(.*?)'\)", query)
        if m and not m.group(1).isdigit():
            rows = [r for r in rows if r[0] < m.group(1)]

        m = re.search(r"\(time = '(.*?)' AND millis ([<>]) (\d+)\) OR \(time ([<>]) '(.*?)'\)", query)
        if m:
            ts, op, millis = m.group(1), m.group(2), int(m.group(3))
            if op == "<":
                rows = [r for r in rows if (r[0], r[1]) < (ts, millis)]
            else:
                rows = [r for r in rows if (r[0], r[1]) > (ts, millis)]

        rows.sort(key=lambda r: (r[0], r[1]), reverse="ORDER BY time DESC" in query)

        m = re.search(r"^LIMIT (\d+)$", query, re.MULTILINE)
        if m:
            rows = rows[: int(m.group(1))]
        return rows

    def __call__(self, query):
        headers = ["Content-Type: text/tab-separated-values; charset=UTF-8"]
        headers.extend(self.progress)
        body = "".join(f"{t}\t{ms}\t{payload}\n" for t, ms, payload in self.select(query))
        return headers, body.encode("utf-8")


class _Handler(socketserver.StreamRequestHandler):
    def handle(self):
        request_line = self.rfile.readline().decode("ascii").strip()
        while self.rfile.readline().strip():
            pass

        target = request_line.split(" ")[1]
        params = dict(parse_qsl(urlsplit(target).query, keep_blank_values=True))
        self.server.requests.append(params)

        response = self.server.responder(params.get("query", ""))
        if isinstance(response, bytes):
            self.wfile.write(response)
            return

        headers, body = response
        out = ["HTTP/1.0 200 OK", *headers, "", ""]
        self.wfile.write("\r\n".join(out).encode("latin-1"))
        self.wfile.write(body)


class FakeClickHouse(socketserver.ThreadingTCPServer):
    """Threaded TCP server speaking the header/body protocol.

    ``responder`` maps a query string to either (headers, body) or raw
    response bytes.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _Handler)
        self.requests = []
        self.responder = TableEngine([])

    @property
    def address(self):
        host, port = self.server_address[:2]
        return f"{host}:{port}"

    @property
    def queries(self):
        return [r.get("query", "") for r in self.requests]


@pytest.fixture
def fake_clickhouse():
    """Start a fake query service on a free local port."""
    server = FakeClickHouse()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def sample_rows():
    """The three-row table from the context example."""
    return [
        ("2024-01-01 00:00:00", 500, "alpha error"),
        ("2024-01-01 00:00:00", 600, "beta"),
        ("2024-01-01 00:00:00", 700, "gamma error"),
    ]


@pytest.fixture
def scan_output(fake_clickhouse):
    """Run a scan against the fake service and return what was written."""

    def _scan(**kwargs):
        config = SearchConfig(address=fake_clickhouse.address, **kwargs)
        buf = io.BytesIO()
        last = run_scan(config, QueryStream(config.address, timeout=5), RowWriter(buf))
        return buf.getvalue().decode("utf-8"), last

    return _scan


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmp = tempfile.mkdtemp()
    yield Path(tmp)
    shutil.rmtree(tmp)
