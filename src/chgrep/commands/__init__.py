"""
chgrep commands module.

This module provides the command implementations for the chgrep CLI.
"""

from chgrep.commands.search_cmd import cmd_search, install_signal_handlers

__all__ = [
    "cmd_search",
    "install_signal_handlers",
]
