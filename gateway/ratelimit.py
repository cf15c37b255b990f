# ratelimit.py
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class WindowRecord:
    client_key: str
    window_start: float
    request_count: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets, for the Retry-After header."""
        return max(1, math.ceil(self.reset_after))


class RateLimiter:
    """
    Fixed-window request counter keyed by client address.

    The first request of a client opens a window of ``window`` seconds; every
    request in it is counted, and once the count exceeds ``limit`` the
    request is refused until the window elapses and the counter starts over.
    """

    def __init__(self, limit: int = 100, window: float = 60.0, clock: Callable[[], float] = time.monotonic):
        if limit <= 0 or window <= 0:
            raise ValueError("limit and window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._records: Dict[str, WindowRecord] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, client_key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.window:
                self._sweep(now)

            record = self._records.get(client_key)
            if record is None or now - record.window_start >= self.window:
                record = WindowRecord(client_key=client_key, window_start=now)
                self._records[client_key] = record

            record.request_count += 1
            reset_after = record.window_start + self.window - now
            return RateLimitDecision(
                allowed=record.request_count <= self.limit,
                limit=self.limit,
                remaining=max(0, self.limit - record.request_count),
                reset_after=reset_after,
            )

    def reset(self, client_key: str = None) -> None:
        with self._lock:
            if client_key is None:
                self._records.clear()
            else:
                self._records.pop(client_key, None)

    def __len__(self) -> int:
        return len(self._records)

    def _sweep(self, now: float) -> None:
        expired = [key for key, record in self._records.items() if now - record.window_start >= self.window]
        for key in expired:
            del self._records[key]
        self._last_sweep = now
