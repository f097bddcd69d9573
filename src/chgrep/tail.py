"""
Continuous tailing: repeat the scan with an advancing lower time bound.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable

from chgrep.config import SearchConfig
from chgrep.output import Row
from chgrep.stream import CancelToken

logger = logging.getLogger("chgrep")

LOOKBACK_SECONDS = 60


@dataclass(frozen=True)
class Cursor:
    """Lower time bound for the next tail cycle.

    ``initial`` marks a bound that did not come from a row (the startup
    lookback or a user-supplied --after); it is not comparable with row
    timestamps, so the first emitted row always replaces it.
    """

    value: str
    initial: bool = False

    @classmethod
    def lookback(cls, now: float, seconds: int = LOOKBACK_SECONDS) -> Cursor:
        """Start ``seconds`` before ``now``, as a Unix timestamp string."""
        return cls(value=str(int(now) - seconds), initial=True)

    def advance(self, row: Row | None) -> Cursor:
        """Move to the row's timestamp (second precision); never move back."""
        if row is None:
            return self
        if not self.initial and row.timestamp < self.value:
            return self
        return Cursor(value=row.timestamp)


class TailState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"


class TailController:
    """Drives repeated scans in forward order until cancelled.

    Example usage:
        tail = TailController(config, scan=lambda cfg: run_scan(cfg, stream), cancel=token)
        tail.run()
    """

    def __init__(
        self,
        config: SearchConfig,
        scan: Callable[[SearchConfig], Row | None],
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the controller.

        Args:
            config: Base configuration; ordering is forced to forward
            scan: Runs one scan and returns the last row it emitted
            cancel: Token that ends the loop (also interrupts the sleep)
            clock: Wall clock used for the initial lookback
        """
        self.config = replace(config, reverse=False)
        self.scan = scan
        self.cancel = cancel or CancelToken()
        if config.after:
            self.cursor = Cursor(value=config.after, initial=True)
        else:
            self.cursor = Cursor.lookback(clock())
        self.state = TailState.IDLE

    def cycle_config(self) -> SearchConfig:
        """Configuration for the next cycle, bounded below by the cursor."""
        return replace(self.config, after=self.cursor.value)

    def step(self) -> Row | None:
        """Run one cycle and advance the cursor once it has completed."""
        last = self.scan(self.cycle_config())
        self.cursor = self.cursor.advance(last)
        self.state = TailState.POLLING
        logger.debug(f"Tail cursor: {self.cursor.value}")
        return last

    def run(self, max_cycles: int | None = None) -> int:
        """Poll until cancelled (or max_cycles reached); return cycles run."""
        cycles = 0
        while not self.cancel.cancelled:
            self.step()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if self.cancel.wait(self.config.poll_interval):
                break
        return cycles
