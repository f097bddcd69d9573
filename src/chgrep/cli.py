"""
chgrep CLI - grep for event-log tables in ClickHouse.

Usage:
    chgrep [options]

Examples:
    chgrep -F error                           # newest matches first
    chgrep -F error -C 2                      # with 2 lines of context
    chgrep -E 'timeout|refused' --no-reverse  # regex, oldest first
    chgrep --where "vine='Y' AND star_rating>4" --limit 20
    chgrep --after '2024-01-01 00:00:00' --before '2024-01-02 00:00:00'
    chgrep -F error --tailf                   # follow new rows

Settings (address, table, fields, text_field, timeout, poll_interval)
are read from .chgrep.yaml in the current directory or a parent, or
from ~/.config/chgrep/config.yaml. Flags override them.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from chgrep.commands import cmd_search
from chgrep.errors import ChgrepError, ScanCancelled, is_broken_pipe

logger = logging.getLogger("chgrep")


def _setup_logging() -> None:
    """Configure the chgrep logger with stderr handler."""
    chgrep_logger = logging.getLogger("chgrep")
    if not chgrep_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        chgrep_logger.addHandler(handler)
    # Default level is WARNING (quiet), changed by --debug
    chgrep_logger.setLevel(logging.WARNING)


def _silence_stdout() -> None:
    """Point stdout at devnull so the interpreter's final flush cannot fail."""
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError):
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chgrep",
        description="chgrep - grep-like browsing of event logs stored in ClickHouse",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # grep parameters
    grep = parser.add_argument_group("search")
    grep.add_argument(
        "-B",
        type=int,
        dest="before_lines",
        default=0,
        metavar="N",
        help="How many lines of context to return before the found line",
    )
    grep.add_argument(
        "-A",
        type=int,
        dest="after_lines",
        default=0,
        metavar="N",
        help="How many lines of context to return after the found line",
    )
    grep.add_argument(
        "-C",
        type=int,
        dest="context_lines",
        default=0,
        metavar="N",
        help="How many lines of context to return both before and after the found line",
    )
    grep.add_argument("-F", dest="fixed_string", default="", help="Fixed string search")
    grep.add_argument("-E", dest="regex", default="", help="Regex string search")
    grep.add_argument(
        "--tailf", action="store_true", help="Print incoming logs continuously"
    )

    # log filtering parameters
    filt = parser.add_argument_group("filtering")
    filt.add_argument(
        "--reverse",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Return results in reverse chronological order (default: yes)",
    )
    filt.add_argument(
        "--before",
        default="",
        help="Date and time before which to display results (without milliseconds)",
    )
    filt.add_argument(
        "--after",
        default="",
        help="Date and time after which to display results (without milliseconds)",
    )
    filt.add_argument(
        "--where",
        default="",
        help="""Additional filters in WHERE (e.g. "vine='Y' AND star_rating>4")""",
    )
    filt.add_argument(
        "--limit", type=int, default=0, help="Limit the number of results (0 means no limit)"
    )

    # table / connection parameters
    conn = parser.add_argument_group("table and connection")
    conn.add_argument(
        "--fields",
        help="Comma-separated list of fields to return in addition to the timestamp",
    )
    conn.add_argument("--text-field", help="The name of the text field that is being matched")
    conn.add_argument("--table", help="The name of the table to scan")
    conn.add_argument("--ch-addr", help="ClickHouse server address (HTTP endpoint, host:port)")
    conn.add_argument("--timeout", type=float, help="Socket timeout in seconds")
    conn.add_argument(
        "--poll-interval", type=float, help="Seconds between --tailf cycles (default: 1)"
    )
    conn.add_argument("--config", metavar="PATH", help="Settings file (YAML)")
    conn.add_argument("--debug", action="store_true", help="Print generated queries and timings")

    parser.set_defaults(func=cmd_search)
    return parser


def main(argv: list[str] | None = None) -> None:
    _setup_logging()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        args.func(args)
    except ScanCancelled:
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(130)
    except (ChgrepError, OSError) as e:
        if is_broken_pipe(e):
            _silence_stdout()
            sys.exit(0)
        logger.error(f"FATAL error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
