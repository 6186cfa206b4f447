import time
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class _FailureWindow:
    failures: list[float] = field(default_factory=list)
    locked_until: float = 0.0


class LoginRateLimiter:
    """In-process lockout after repeated failed logins for one username/IP pair."""

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self._windows: dict[str, _FailureWindow] = {}
        self._lock = Lock()

    @staticmethod
    def key_for(username: str, client_ip: str) -> str:
        return f"{username.strip().lower()}:{client_ip}"

    def retry_after(self, key: str) -> int:
        """Seconds until the key may try again, 0 when not locked."""
        now = time.time()
        with self._lock:
            window = self._windows.get(key)
            if not window:
                return 0
            self._prune(window, now)
            if window.locked_until > now:
                return int(window.locked_until - now) + 1
            return 0

    def register_failure(self, key: str) -> None:
        now = time.time()
        with self._lock:
            window = self._windows.setdefault(key, _FailureWindow())
            self._prune(window, now)
            window.failures.append(now)
            if len(window.failures) >= self.max_attempts:
                window.locked_until = now + self.lock_seconds

    def register_success(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, window: _FailureWindow, now: float) -> None:
        cutoff = now - self.window_seconds
        window.failures = [ts for ts in window.failures if ts >= cutoff]
