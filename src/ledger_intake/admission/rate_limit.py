"""
Sliding-window import rate limiter.

One window per installation, persisted through the store. Every operation
is a single atomic read-prune-modify-write region
(LedgerStore.update_rate_window), so concurrent imports cannot undercount.

The pipeline reserves a slot before calling the oracle and releases it
again unless the import commits, so a successful run leaves exactly one
timestamp behind.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from ..schemas.ledger import RateWindow
from ..state_store.base import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_IMPORTS = 20
DEFAULT_WINDOW_SECONDS = 3600


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0
    # Timestamp appended by reserve(); pass it to release()
    reservation: Optional[float] = None


class ImportRateLimiter:
    def __init__(
        self,
        store: LedgerStore,
        max_imports: int = DEFAULT_MAX_IMPORTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_imports = max_imports
        self.window_seconds = window_seconds
        self._clock = clock

    def _prune(self, window: RateWindow, now: float) -> None:
        cutoff = now - self.window_seconds
        window.timestamps = sorted(t for t in window.timestamps if t > cutoff)

    def _retry_after(self, window: RateWindow, now: float) -> int:
        if not window.timestamps:
            return self.window_seconds
        oldest = window.timestamps[0]
        return max(1, math.ceil(oldest + self.window_seconds - now))

    def _decide(self, window: RateWindow, now: float, reserve: bool) -> RateDecision:
        self._prune(window, now)
        remaining = self.max_imports - len(window.timestamps)
        if remaining <= 0:
            return RateDecision(
                allowed=False,
                remaining=0,
                retry_after_seconds=self._retry_after(window, now),
            )
        if not reserve:
            return RateDecision(allowed=True, remaining=remaining)
        window.timestamps.append(now)
        return RateDecision(allowed=True, remaining=remaining - 1, reservation=now)

    def check(self) -> RateDecision:
        """Prune the window and report whether another import is allowed."""
        now = self._clock()
        return self.store.update_rate_window(lambda window: self._decide(window, now, False))

    def reserve(self) -> RateDecision:
        """Atomically check the cap and append the current timestamp if allowed."""
        now = self._clock()
        decision = self.store.update_rate_window(lambda window: self._decide(window, now, True))
        if not decision.allowed:
            logger.info(f"Import rate limit reached; retry in {decision.retry_after_seconds}s")
        return decision

    def release(self, reservation: float) -> None:
        """Give back a slot taken by reserve() for an import that did not commit."""

        def _remove(window: RateWindow) -> None:
            if reservation in window.timestamps:
                window.timestamps.remove(reservation)

        self.store.update_rate_window(_remove)
