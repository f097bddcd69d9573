"""
Connection layer for the remote query service.

Each query gets its own TCP connection. The request is a single HTTP/1.0
GET line; the response is a header block (possibly carrying progress
notifications) terminated by a blank line, followed by tab-separated
rows until the server closes the connection.
"""

from __future__ import annotations

import socket
import threading
from typing import BinaryIO, Iterator
from urllib.parse import urlencode

from chgrep.errors import ProtocolError, ScanCancelled, TransportError
from chgrep.progress import PROGRESS_HEADER, Progress, ProgressReporter


DEFAULT_PORT = 8123


class CancelToken:
    """Cooperative cancellation flag checked at every read boundary.

    The scan checks it before every read and raises ScanCancelled once it
    is set. wait() doubles as an interruptible sleep.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled("scan cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


def parse_address(address: str) -> tuple[str, int]:
    """Split "host:port" (or "[v6]:port", or bare host) into its parts.

    Examples:
        >>> parse_address("localhost:8123")
        ('localhost', 8123)
        >>> parse_address("[::1]:9000")
        ('::1', 9000)
        >>> parse_address("::1")
        ('::1', 8123)
    """
    # An unbracketed IPv6 literal cannot carry a port.
    if address.count(":") > 1 and not address.startswith("["):
        return address, DEFAULT_PORT
    host, sep, port = address.rpartition(":")
    if not sep or "]" in port:
        host, port = address, ""
    host = host.strip("[]")
    if not port:
        return host, DEFAULT_PORT
    try:
        return host, int(port)
    except ValueError:
        raise TransportError(f"invalid address {address!r}") from None


def build_request(query: str) -> bytes:
    """Build the request line for a query, including its trailing blank line."""
    params = urlencode(
        [
            ("cancel_http_readonly_queries_on_client_close", "1"),
            ("send_progress_in_http_headers", "1"),
            ("query", query),
        ],
        encoding="utf-8",
        errors="surrogateescape",
    )
    return f"GET /?{params} HTTP/1.0\n\n".encode("ascii")


class QueryStream:
    """Runs queries against the remote service and streams body lines.

    Example usage:
        stream = QueryStream("localhost:8123", reporter=ProgressReporter())
        for line in stream.execute(sql):
            ...
    """

    def __init__(
        self,
        address: str,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
        reporter: ProgressReporter | None = None,
    ):
        """Initialize the stream.

        Args:
            address: host:port of the service's HTTP endpoint
            timeout: Socket timeout in seconds (None blocks forever)
            cancel: Token checked before each read
            reporter: Receives progress notifications (None to ignore them)
        """
        self.address = address
        self.timeout = timeout
        self.cancel = cancel or CancelToken()
        self.reporter = reporter

    def without_progress(self) -> QueryStream:
        """Return a stream sharing this connection setup but reporting nothing."""
        return QueryStream(self.address, timeout=self.timeout, cancel=self.cancel)

    def _connect(self) -> socket.socket:
        host, port = parse_address(self.address)
        try:
            return socket.create_connection((host, port), timeout=self.timeout)
        except OSError as e:
            raise TransportError(f"connecting to {self.address}: {e}") from e

    def _readline(self, rd: BinaryIO) -> bytes:
        self.cancel.raise_if_cancelled()
        try:
            return rd.readline()
        except OSError as e:
            raise TransportError(f"reading from {self.address}: {e}") from e

    def _read_headers(self, rd: BinaryIO) -> None:
        """Consume the header block, forwarding progress notifications."""
        while True:
            raw = self._readline(rd)
            if not raw:
                raise ProtocolError("unexpected error while reading headers: EOF")
            line = raw.decode("latin-1").strip()
            if not line:
                return
            if line.startswith(PROGRESS_HEADER):
                progress = Progress.parse(line[len(PROGRESS_HEADER) :])
                if self.reporter is not None:
                    self.reporter.report(progress)

    def execute(self, query: str) -> Iterator[str]:
        """Send a query and yield body lines as they arrive.

        Lines keep their trailing newline (the last one may lack it).
        Undecodable bytes are carried as surrogates so they can be written
        back out unchanged. The connection is closed when the generator is
        exhausted or closed.

        Raises:
            TransportError: On connect, write, or read failure
            ProtocolError: On an undecodable progress header or header EOF
            ScanCancelled: If the cancel token is set
        """
        self.cancel.raise_if_cancelled()
        sock = self._connect()
        try:
            try:
                sock.sendall(build_request(query))
            except OSError as e:
                raise TransportError(f"writing to {self.address}: {e}") from e

            if self.reporter is not None:
                self.reporter.start()

            with sock.makefile("rb") as rd:
                self._read_headers(rd)
                if self.reporter is not None:
                    self.reporter.clear()

                while True:
                    raw = self._readline(rd)
                    if not raw:
                        return
                    yield raw.decode("utf-8", "surrogateescape")
        finally:
            sock.close()

    def fetch(self, query: str) -> list[str]:
        """Run a query and return its body lines, trailing blank lines removed."""
        lines = list(self.execute(query))
        while lines and not lines[-1].strip():
            lines.pop()
        return lines
