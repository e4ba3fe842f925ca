from __future__ import annotations

import json
import time
from typing import Callable, Optional

from redis import Redis
from redis.exceptions import RedisError

from clinicauth.logging import get_logger
from clinicauth.service.csrf import CsrfRecord

logger = get_logger(__name__)


class RedisCache:
    """Thin Redis wrapper for per-session CSRF state.

    The client is synchronous: CSRF regeneration runs inside the refresh
    rotation transaction, which is itself synchronous.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        self.client.ping()

    @staticmethod
    def _csrf_key(session_key: str) -> str:
        return f"csrf:session:{session_key}"

    def get_csrf(self, session_key: str) -> Optional[dict]:
        cached = self.client.get(self._csrf_key(session_key))
        if not cached:
            return None
        try:
            return json.loads(cached)
        except (json.JSONDecodeError, TypeError):
            logger.warning("csrf_record_corrupt", session_key_prefix=session_key[:8])
            return None

    def set_csrf(self, session_key: str, payload: dict, ttl_seconds: int) -> None:
        self.client.set(
            self._csrf_key(session_key), json.dumps(payload), ex=max(1, ttl_seconds)
        )

    def delete_csrf(self, session_key: str) -> None:
        self.client.delete(self._csrf_key(session_key))

    def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        try:
            self.client.close()
        except RedisError as exc:
            logger.warning("redis_close_failed", error=str(exc))


class RedisCsrfStore:
    """CSRF session store backed by :class:`RedisCache`; Redis expiry tracks the TTL."""

    def __init__(self, cache: RedisCache, *, clock: Callable[[], float] = time.time) -> None:
        self.cache = cache
        self._clock = clock

    def get(self, session_key: str) -> Optional[CsrfRecord]:
        payload = self.cache.get_csrf(session_key)
        if not payload:
            return None
        try:
            return CsrfRecord(token=str(payload["token"]), expires_at=float(payload["expires_at"]))
        except (KeyError, TypeError, ValueError):
            return None

    def set(self, session_key: str, record: CsrfRecord) -> None:
        ttl = int(record.expires_at - self._clock())
        self.cache.set_csrf(
            session_key,
            {"token": record.token, "expires_at": record.expires_at},
            ttl,
        )

    def delete(self, session_key: str) -> None:
        self.cache.delete_csrf(session_key)
