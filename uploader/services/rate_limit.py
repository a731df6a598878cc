import threading
import time
from typing import Callable, Dict, List, Optional

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_MS = 15 * 60 * 1000


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class SlidingWindowRateLimiter:
    """
    Per-client sliding window admission counter.

    Holds, for each client identity, the timestamps of admitted calls that
    still fall inside the trailing window. One instance is owned by the
    application (see `uploader.main.create_app`) and cleared on shutdown;
    tests build their own with a fake clock.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], float] = monotonic_ms,
    ):
        if limit < 0 or window_ms <= 0:
            raise ValueError("limit must be >= 0 and window_ms > 0")
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock
        self._windows: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def admit(
        self,
        client_id: str,
        limit: Optional[int] = None,
        window_ms: Optional[int] = None,
    ) -> bool:
        limit = self.limit if limit is None else limit
        window_ms = self.window_ms if window_ms is None else window_ms

        with self._lock:
            now = self._clock()
            window_start = now - window_ms
            self._sweep(window_start, keep=client_id)

            recent = [t for t in self._windows.get(client_id, ()) if t > window_start]
            if len(recent) >= limit:
                if recent:
                    self._windows[client_id] = recent
                else:
                    self._windows.pop(client_id, None)
                return False

            recent.append(now)
            self._windows[client_id] = recent
            return True

    def _sweep(self, window_start: float, keep: str) -> None:
        # drop identities whose whole history has expired
        expired = [
            cid for cid, stamps in self._windows.items()
            if cid != keep and (not stamps or stamps[-1] <= window_start)
        ]
        for cid in expired:
            del self._windows[cid]

    def remaining(self, client_id: str) -> int:
        """Admissions left for `client_id` in the current window, for inspection."""
        with self._lock:
            window_start = self._clock() - self.window_ms
            used = sum(1 for t in self._windows.get(client_id, ()) if t > window_start)
        return max(self.limit - used, 0)

    def tracked_clients(self) -> int:
        """Number of identities currently held, for inspection."""
        with self._lock:
            return len(self._windows)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()
