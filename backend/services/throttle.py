import math
import time
from collections.abc import Callable, Hashable
from threading import Lock


class SubmissionThrottle:
    """Allows one submission per key inside a fixed cooldown window.

    ``check`` records the attempt and returns ``None`` when it is allowed, or
    the number of whole seconds the caller must wait otherwise.
    """

    def __init__(self, cooldown_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = Lock()
        self._last_attempt: dict[Hashable, float] = {}

    def check(self, key: Hashable) -> int | None:
        if self.cooldown_seconds <= 0:
            return None

        now = self._clock()
        with self._lock:
            self._prune(now)
            last = self._last_attempt.get(key)
            if last is not None and now - last < self.cooldown_seconds:
                return max(1, math.ceil(self.cooldown_seconds - (now - last)))
            self._last_attempt[key] = now
            return None

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._last_attempt.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [key for key, last in self._last_attempt.items() if now - last >= self.cooldown_seconds]
        for key in expired:
            del self._last_attempt[key]
