"""
chgrep - grep for event logs stored in ClickHouse.

Search a (time, millis, payload...) table with fixed strings or regexes,
show context lines around matches, and follow new rows as they arrive.

Example usage:
    from chgrep import QueryStream, SearchConfig, run_scan

    config = SearchConfig(fixed_string="error", before_lines=2, after_lines=2)
    run_scan(config, QueryStream(config.address))
"""

__version__ = "0.1.0"

from chgrep.config import SearchConfig, Settings
from chgrep.scan import Scanner, run_scan
from chgrep.stream import CancelToken, QueryStream
from chgrep.tail import TailController

__all__ = [
    "CancelToken",
    "QueryStream",
    "Scanner",
    "SearchConfig",
    "Settings",
    "TailController",
    "run_scan",
    "__version__",
]
