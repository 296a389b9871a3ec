import time
from dataclasses import dataclass, field
from threading import Lock


def _prune(timestamps: list[float], now: float, window_seconds: int) -> list[float]:
    cutoff = now - window_seconds
    return [ts for ts in timestamps if ts >= cutoff]


@dataclass
class _FailureState:
    failures: list[float] = field(default_factory=list)
    lock_until: float = 0.0


class LoginRateLimiter:
    """Locks a login key out after too many failures inside the window."""

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self._states: dict[str, _FailureState] = {}
        self._lock = Lock()

    def check(self, key: str) -> int:
        """Returns retry-after seconds when blocked, otherwise 0."""
        now = time.time()
        with self._lock:
            state = self._states.get(key)
            if not state:
                return 0
            state.failures = _prune(state.failures, now, self.window_seconds)
            if state.lock_until > now:
                return int(state.lock_until - now) + 1
            return 0

    def register_failure(self, key: str) -> None:
        now = time.time()
        with self._lock:
            state = self._states.setdefault(key, _FailureState())
            state.failures = _prune(state.failures, now, self.window_seconds)
            state.failures.append(now)
            if len(state.failures) >= self.max_attempts:
                state.lock_until = now + self.lock_seconds

    def register_success(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()


class SlidingWindowRateLimiter:
    """Caps requests per key; used on the public quote payment endpoints."""

    def __init__(self, *, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._lock = Lock()

    def check_and_consume(self, key: str) -> int:
        """Returns retry-after seconds when blocked, otherwise 0."""
        now = time.time()
        with self._lock:
            hits = _prune(self._hits.get(key, []), now, self.window_seconds)
            if len(hits) >= self.max_requests:
                self._hits[key] = hits
                return max(int((min(hits) + self.window_seconds) - now) + 1, 1)
            hits.append(now)
            self._hits[key] = hits
            return 0

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()
