"""Redis-backed failed-attempt lockout tracker."""

from __future__ import annotations

from redis import Redis


class RedisLockoutTracker:
    """Distributed lockout tracker shared by every service replica.

    Failures are counted in ``<prefix>:<key>:failures`` and an active lockout
    is a ``<prefix>:<key>:locked`` key whose TTL is the remaining lockout.
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        lockout_seconds: int,
        key_prefix: str = "lockout",
    ) -> None:
        """Initialise the Redis client and lockout configuration."""
        self._client = client
        self._max_attempts = max_attempts
        self._lockout_ms = lockout_seconds * 1000
        self._key_prefix = key_prefix

    def is_locked_out(self, key: str) -> bool:
        """Return ``True`` while the lock key for ``key`` exists."""
        return bool(self._client.exists(self._locked_key(key)))

    def record_failure(self, key: str) -> bool:
        """Count a failed attempt; return ``True`` when it triggers a lockout."""
        failures_key = self._failures_key(key)
        pipe = self._client.pipeline()
        pipe.incr(failures_key)
        pipe.pexpire(failures_key, self._lockout_ms)
        failures, _ = pipe.execute()
        if int(failures) < self._max_attempts:
            return False

        pipe = self._client.pipeline()
        pipe.set(self._locked_key(key), 1, px=self._lockout_ms)
        pipe.delete(failures_key)
        pipe.execute()
        return True

    def reset(self, key: str) -> None:
        """Forget failed attempts for ``key`` after a successful verification."""
        self._client.delete(self._failures_key(key))

    def _failures_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}:failures"

    def _locked_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}:locked"
