"""Access-token session denylists used to end a session before its token expires."""

from __future__ import annotations

import time
from datetime import datetime
from threading import Lock
from typing import Callable, Dict

from redis import Redis


class InMemorySessionStore:
    """Thread-safe denylist of ended session ids, pruned as tokens expire."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._ended: Dict[str, float] = {}
        self._lock = Lock()

    def end_session(self, session_id: str, expires_at: datetime) -> None:
        """Denylist ``session_id`` until ``expires_at``."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._ended[session_id] = expires_at.timestamp()

    def is_ended(self, session_id: str) -> bool:
        now = self._clock()
        with self._lock:
            self._prune(now)
            return session_id in self._ended

    def _prune(self, now: float) -> None:
        for session_id, expiry in list(self._ended.items()):
            if expiry <= now:
                del self._ended[session_id]


class RedisSessionStore:
    """Denylist kept in Redis so every replica rejects an ended session."""

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "session:ended",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock

    def end_session(self, session_id: str, expires_at: datetime) -> None:
        """Denylist ``session_id`` with a TTL matching the token's remaining lifetime."""
        remaining_ms = int((expires_at.timestamp() - self._clock()) * 1000)
        if remaining_ms <= 0:
            return
        self._client.set(f"{self._key_prefix}:{session_id}", 1, px=remaining_ms)

    def is_ended(self, session_id: str) -> bool:
        return bool(self._client.exists(f"{self._key_prefix}:{session_id}"))
