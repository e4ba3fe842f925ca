from __future__ import annotations

import hmac
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from clinicauth.logging import get_logger
from clinicauth.service.errors import ForbiddenError

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-TOKEN"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class CsrfRecord:
    token: str
    expires_at: float


class CsrfSessionStore(Protocol):
    """Keyed holder for per-session CSRF state."""

    def get(self, session_key: str) -> Optional[CsrfRecord]: ...

    def set(self, session_key: str, record: CsrfRecord) -> None: ...

    def delete(self, session_key: str) -> None: ...


class MemoryCsrfStore:
    """Process-local CSRF state; expired entries are pruned an hour after expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._records: Dict[str, CsrfRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, session_key: str) -> Optional[CsrfRecord]:
        with self._lock:
            return self._records.get(session_key)

    def set(self, session_key: str, record: CsrfRecord) -> None:
        with self._lock:
            self._records[session_key] = record
            self._evict_expired()

    def delete(self, session_key: str) -> None:
        with self._lock:
            self._records.pop(session_key, None)

    def _evict_expired(self) -> None:
        cutoff = self._clock() - 3600
        stale = [key for key, rec in self._records.items() if rec.expires_at < cutoff]
        for key in stale:
            self._records.pop(key, None)


class CsrfGuard:
    """Double-submit CSRF tokens bound to a server-side session key.

    A token lives until its TTL runs out or it is replaced. It is not rotated
    per request, so a client can issue a burst of writes with one token.
    """

    def __init__(
        self,
        store: CsrfSessionStore,
        ttl: int = 3600,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def generate(self, session_key: str) -> str:
        token = secrets.token_hex(32)
        self.store.set(
            session_key, CsrfRecord(token=token, expires_at=self._clock() + self.ttl)
        )
        return token

    def regenerate(self, session_key: str) -> str:
        logger.info("csrf_token_regenerated")
        return self.generate(session_key)

    def get_token(self, session_key: Optional[str]) -> Optional[str]:
        if not session_key:
            return None
        record = self.store.get(session_key)
        if not record or record.expires_at < self._clock():
            return None
        return record.token

    def destroy(self, session_key: Optional[str]) -> None:
        if session_key:
            self.store.delete(session_key)

    def validate(
        self, method: str, session_key: Optional[str], header_token: Optional[str]
    ) -> None:
        """Raise :class:`ForbiddenError` unless the request carries the session's token."""
        if method.upper() in SAFE_METHODS:
            return
        if not header_token:
            raise ForbiddenError(
                f"CSRF token missing. Send {CSRF_HEADER} header. "
                "Obtain token from GET /api/auth/csrf-token first."
            )
        record = self.store.get(session_key) if session_key else None
        if record is None:
            raise ForbiddenError(
                "CSRF session not initialised. Call GET /api/auth/csrf-token first."
            )
        if record.expires_at < self._clock():
            self.store.delete(session_key)
            raise ForbiddenError(
                "CSRF token expired. Call GET /api/auth/csrf-token to obtain a new one."
            )
        if not hmac.compare_digest(record.token.encode(), header_token.encode()):
            logger.warning("csrf_token_mismatch", method=method)
            raise ForbiddenError("CSRF token invalid.")
