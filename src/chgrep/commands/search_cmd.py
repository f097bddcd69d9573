"""
Search command for chgrep CLI.

Handles one-shot searches and continuous tailing.
"""

from __future__ import annotations

import argparse
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from chgrep.config import SearchConfig, Settings
from chgrep.errors import ScanCancelled
from chgrep.output import RowWriter
from chgrep.progress import ProgressReporter
from chgrep.scan import run_scan
from chgrep.stream import CancelToken, QueryStream
from chgrep.tail import TailController

logger = logging.getLogger("chgrep")


@contextmanager
def install_signal_handlers(cancel: CancelToken) -> Iterator[None]:
    """Cancel the token on SIGTERM and SIGPIPE for the duration of the block.

    The handler also raises ScanCancelled so that a read blocked on a
    silent connection is interrupted rather than waiting for more data.
    The previous handlers are restored on exit.
    """
    names = ["SIGTERM", "SIGPIPE"]
    previous: dict[int, Any] = {}

    def _handler(signum: int, frame: Any) -> None:
        logger.debug(f"Received signal {signum}, stopping")
        cancel.cancel()
        raise ScanCancelled(f"received signal {signum}")

    for name in names:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, _handler)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def build_config(args: argparse.Namespace) -> SearchConfig:
    """Load settings (from --config or the usual locations) and apply flags."""
    config_path = Path(args.config) if getattr(args, "config", None) else None
    settings = Settings.load(config_path)
    if settings.path is not None:
        logger.debug(f"Loaded settings from {settings.path}")
    return SearchConfig.from_args(args, settings)


def cmd_search(
    args: argparse.Namespace,
    writer: RowWriter | None = None,
    cancel: CancelToken | None = None,
) -> None:
    """Search the table, or tail it with --tailf."""
    config = build_config(args)
    if config.debug:
        logger.setLevel(logging.DEBUG)

    if cancel is None:
        cancel = CancelToken()
    if writer is None:
        writer = RowWriter()

    stream = QueryStream(
        config.address,
        timeout=config.timeout,
        cancel=cancel,
        reporter=ProgressReporter(),
    )

    with install_signal_handlers(cancel):
        if config.tail:
            tail = TailController(
                config,
                scan=lambda cfg: run_scan(cfg, stream, writer),
                cancel=cancel,
            )
            tail.run()
        else:
            run_scan(config, stream, writer)
