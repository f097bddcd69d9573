"""
Configuration for chgrep.

Settings (where the service lives and which table to read) come from an
optional YAML file; per-invocation search parameters come from the
command line. Both are combined into an immutable SearchConfig that is
handed to every component at construction.
"""

from __future__ import annotations

import argparse
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from chgrep.errors import ConfigError

CONFIG_FILE = ".chgrep.yaml"
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "chgrep" / "config.yaml"

DEFAULT_ADDRESS = "localhost:8123"
DEFAULT_TABLE = "amazon"
DEFAULT_FIELDS = "review_body"
DEFAULT_TEXT_FIELD = "review_body"
DEFAULT_POLL_INTERVAL = 1.0


# ============================================================================
# Settings file
# ============================================================================


@dataclass
class Settings:
    """Defaults loaded from a settings file.

    Example config.yaml:
        address: clickhouse.internal:8123
        table: logs
        fields: host,message
        text_field: message
        timeout: 30
    """

    address: str = DEFAULT_ADDRESS
    table: str = DEFAULT_TABLE
    fields: str = DEFAULT_FIELDS
    text_field: str = DEFAULT_TEXT_FIELD
    timeout: float | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    path: Path | None = field(default=None, compare=False)

    @classmethod
    def find(cls, start_dir: Path | None = None) -> Path | None:
        """Find a settings file in start_dir or its parents, then the global one.

        Args:
            start_dir: Directory to start searching from (default: cwd)

        Returns:
            Path to the settings file, or None if there is none.
        """
        if start_dir is None:
            start_dir = Path.cwd()

        for p in [start_dir, *list(start_dir.parents)]:
            candidate = p / CONFIG_FILE
            if candidate.is_file():
                return candidate

        if GLOBAL_CONFIG_PATH.is_file():
            return GLOBAL_CONFIG_PATH
        return None

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load settings from path, or from the file find() locates.

        Missing keys keep their defaults and unknown keys are ignored.

        Raises:
            ConfigError: If the file cannot be read or is not a mapping
        """
        if path is None:
            path = cls.find()
            if path is None:
                return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"reading {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping, got {type(data).__name__}")

        known = {f.name for f in dataclasses.fields(cls)} - {"path"}
        values: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        try:
            if values.get("timeout") is not None:
                values["timeout"] = float(values["timeout"])
            if "poll_interval" in values:
                values["poll_interval"] = float(values["poll_interval"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{path}: {e}") from e
        for key in ("address", "table", "fields", "text_field"):
            if key in values:
                values[key] = str(values[key])

        return cls(path=Path(path), **values)


# ============================================================================
# Search configuration
# ============================================================================


@dataclass(frozen=True)
class SearchConfig:
    """Everything one invocation needs, fixed for its lifetime.

    The tail controller derives per-cycle copies with dataclasses.replace()
    rather than mutating this value.
    """

    # Search
    fixed_string: str = ""
    regex: str = ""
    where: str = ""
    before: str = ""  # upper time bound (exclusive)
    after: str = ""  # lower time bound (exclusive)
    limit: int = 0  # 0 means no limit

    # Output
    reverse: bool = True
    before_lines: int = 0
    after_lines: int = 0
    tail: bool = False

    # Table shape
    table: str = DEFAULT_TABLE
    fields: str = DEFAULT_FIELDS
    text_field: str = DEFAULT_TEXT_FIELD

    # Connection
    address: str = DEFAULT_ADDRESS
    timeout: float | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    debug: bool = False

    @property
    def context_requested(self) -> bool:
        return self.before_lines > 0 or self.after_lines > 0

    @classmethod
    def from_args(cls, args: argparse.Namespace, settings: Settings | None = None) -> SearchConfig:
        """Build a configuration from parsed flags layered over settings.

        Flags left unset (None) fall back to the settings file. A non-zero
        -C overrides -A and -B.

        Raises:
            ConfigError: On negative counts or limits
        """
        if settings is None:
            settings = Settings()

        before_lines = args.before_lines or 0
        after_lines = args.after_lines or 0
        if args.context_lines:
            before_lines = after_lines = args.context_lines

        limit = args.limit or 0
        for name, value in (("-B", before_lines), ("-A", after_lines), ("--limit", limit)):
            if value < 0:
                raise ConfigError(f"{name} must not be negative (got {value})")

        def pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        return cls(
            fixed_string=args.fixed_string or "",
            regex=args.regex or "",
            where=args.where or "",
            before=args.before or "",
            after=args.after or "",
            limit=limit,
            reverse=args.reverse,
            before_lines=before_lines,
            after_lines=after_lines,
            tail=args.tailf,
            table=pick(args.table, settings.table),
            fields=pick(args.fields, settings.fields),
            text_field=pick(args.text_field, settings.text_field),
            address=pick(args.ch_addr, settings.address),
            timeout=pick(args.timeout, settings.timeout),
            poll_interval=pick(args.poll_interval, settings.poll_interval),
            debug=args.debug,
        )
