"""Per-identifier sliding-window admission control.

Each identifier owns a window of admission timestamps. Every check prunes
entries older than the window and admits only while the surviving count is
below the ceiling.

Thread-safe: admissions for the same identifier are serialized by a
per-identifier ``threading.Lock``; the registry lock is held only while a
window is looked up or created, so independent identifiers never contend.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from time import time


@dataclass
class RateLimitWindow:
    """Admission timestamps for one caller, oldest first."""

    identifier: str
    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def prune(self, cutoff: float) -> None:
        """Drop admissions at or before *cutoff*."""
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter.

    Parameters
    ----------
    ceiling : int
        Maximum admissions per identifier inside the window.
    window_seconds : float
        Length of the trailing window.
    clock : callable, optional
        Returns the current time in seconds; defaults to ``time.time`` so that
        ``reset_time`` is an epoch timestamp.
    """

    def __init__(
        self,
        ceiling: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time,
    ) -> None:
        self._ceiling = max(ceiling, 0)
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._registry_lock = threading.Lock()

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def now(self) -> float:
        return self._clock()

    def _window(self, identifier: str) -> RateLimitWindow:
        window = self._windows.get(identifier)
        if window is not None:
            return window
        with self._registry_lock:
            return self._windows.setdefault(identifier, RateLimitWindow(identifier))

    def admit(self, identifier: str) -> bool:
        """Record and allow an admission, or refuse it once the ceiling is reached."""
        window = self._window(identifier)
        with window.lock:
            now = self._clock()
            window.prune(now - self._window_seconds)
            if len(window.timestamps) >= self._ceiling:
                return False
            window.timestamps.append(now)
            return True

    def remaining(self, identifier: str) -> int:
        window = self._windows.get(identifier)
        if window is None:
            return self._ceiling
        cutoff = self._clock() - self._window_seconds
        with window.lock:
            live = sum(1 for stamp in window.timestamps if stamp > cutoff)
        return max(0, self._ceiling - live)

    def reset_time(self, identifier: str) -> float:
        """Instant at which the oldest live admission leaves the window; 0 if none."""
        window = self._windows.get(identifier)
        if window is None:
            return 0.0
        cutoff = self._clock() - self._window_seconds
        with window.lock:
            live = [stamp for stamp in window.timestamps if stamp > cutoff]
        if not live:
            return 0.0
        return live[0] + self._window_seconds

    def summary(self, identifier: str) -> dict[str, object]:
        """Return a summary dict suitable for response headers and logs."""
        return {
            "identifier": identifier,
            "ceiling": self._ceiling,
            "window_seconds": self._window_seconds,
            "remaining": self.remaining(identifier),
            "reset_at": self.reset_time(identifier),
        }
