"""
Exception types for chgrep.

Every failure raised by the scan engine derives from ChgrepError so the
CLI can log it and exit non-zero in one place.
"""

from __future__ import annotations

import errno


class ChgrepError(Exception):
    """Base class for chgrep errors."""


class ConfigError(ChgrepError):
    """Invalid settings file or flag combination."""


class TransportError(ChgrepError):
    """Connecting to, writing to, or reading from the query service failed."""


class ProtocolError(ChgrepError):
    """The response header block could not be decoded.

    The offending raw data is kept on the exception for diagnosis.
    """

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class ScanCancelled(ChgrepError):
    """A cancellation token was observed at a read boundary."""


def is_broken_pipe(exc: BaseException | None) -> bool:
    """Return True if exc (or anything it was raised from) is a broken pipe."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, BrokenPipeError):
            return True
        if isinstance(exc, OSError) and exc.errno == errno.EPIPE:
            return True
        if "broken pipe" in str(exc).lower():
            return True
        exc = exc.__cause__ or exc.__context__
    return False
