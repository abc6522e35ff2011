"""Per-address connection rate limiting for WebSocket admission.

Each source address gets a fixed-length counting window that starts on its
first attempt. Up to ``max_attempts`` admissions are allowed inside the
window; further attempts are refused without touching the record. The first
attempt after the window has passed starts a fresh window with a count of 1.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class RateRecord:
    """Attempts counted for one address in the current window."""

    count: int
    window_reset_at: float


class ConnectionRateLimiter:
    """Rolling-window attempt counter keyed by source address.

    Thread-safe: the check and the increment happen under one lock, so
    concurrent attempts never lose an update to a record.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: dict[str, RateRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def allow(self, address: str) -> bool:
        """Record an attempt from *address* and return whether it is allowed."""
        now = self._clock()
        with self._lock:
            record = self._records.get(address)
            if record is None or now > record.window_reset_at:
                self._records[address] = RateRecord(
                    count=1, window_reset_at=now + self.window_seconds
                )
                return True
            if record.count >= self.max_attempts:
                return False
            record.count += 1
            return True

    def get(self, address: str) -> RateRecord | None:
        """Return a copy of the record for *address*, if any."""
        with self._lock:
            record = self._records.get(address)
            if record is None:
                return None
            return RateRecord(record.count, record.window_reset_at)

    def prune(self) -> int:
        """Drop records whose window has expired. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [addr for addr, rec in self._records.items() if now > rec.window_reset_at]
            for addr in expired:
                del self._records[addr]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
