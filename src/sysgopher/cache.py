"""Short-lived cache for process enumeration."""

import logging
import time
from typing import Callable

from sysgopher.models import ProcessRow
from sysgopher.sync import RWLock

logger = logging.getLogger(__name__)


class SampleCache:
    """
    Holds the last process list and when it was taken.

    Back-to-back refreshes inside ``ttl`` seconds reuse the cached rows
    instead of walking the process table again. Callers always get their own
    list, so mutating it cannot corrupt the cache.
    """

    def __init__(self, ttl: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = RWLock()
        self._rows: list[ProcessRow] = []
        self._taken_at: float | None = None

    @property
    def ttl(self) -> float:
        return self._ttl

    def _fresh(self, now: float) -> bool:
        return self._taken_at is not None and bool(self._rows) and now - self._taken_at < self._ttl

    def get(self) -> list[ProcessRow] | None:
        """Return a copy of the cached rows, or None when expired or empty."""
        with self._lock.read():
            if self._fresh(self._clock()):
                return list(self._rows)
        return None

    def get_or_load(self, loader: Callable[[], list[ProcessRow]]) -> list[ProcessRow]:
        """Return cached rows while fresh, otherwise call ``loader`` and store the result."""
        cached = self.get()
        if cached is not None:
            return cached

        with self._lock.write():
            # Another thread may have repopulated while we waited
            if self._fresh(self._clock()):
                return list(self._rows)
            rows = loader()
            self._rows = list(rows)
            self._taken_at = self._clock()
            logger.debug("Process cache repopulated with %d rows", len(rows))
            return list(self._rows)

    def invalidate(self) -> None:
        with self._lock.write():
            self._rows = []
            self._taken_at = None
