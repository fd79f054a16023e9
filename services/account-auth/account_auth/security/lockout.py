"""In-memory failed-attempt lockout tracker."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict


@dataclass(slots=True)
class _AttemptState:
    failures: int = 0
    locked_until: float = 0.0


class LockoutTracker:
    """Thread-safe lockout tracker keyed by account identifier.

    After ``max_attempts`` consecutive failures the key is locked for
    ``lockout_seconds`` and its failure count starts again from zero.
    """

    def __init__(
        self,
        max_attempts: int,
        lockout_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise lockout parameters and per-key storage."""
        self._max_attempts = max_attempts
        self._lockout_seconds = lockout_seconds
        self._clock = clock
        self._states: Dict[str, _AttemptState] = {}
        self._lock = Lock()

    def is_locked_out(self, key: str) -> bool:
        """Return ``True`` while ``key`` is inside an active lockout window."""
        now = self._clock()
        with self._lock:
            state = self._states.get(key)
            return state is not None and state.locked_until > now

    def record_failure(self, key: str) -> bool:
        """Count a failed attempt; return ``True`` when it triggers a lockout."""
        now = self._clock()
        with self._lock:
            state = self._states.setdefault(key, _AttemptState())
            state.failures += 1
            if state.failures < self._max_attempts:
                return False
            state.failures = 0
            state.locked_until = now + self._lockout_seconds
            return True

    def reset(self, key: str) -> None:
        """Forget failed attempts for ``key`` after a successful verification."""
        with self._lock:
            state = self._states.get(key)
            if state is not None:
                state.failures = 0
