from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from clinicauth.config import get_settings, reset_settings_cache
from clinicauth.logging import get_logger
from clinicauth.service.auth import AuthService
from clinicauth.service.crypto import SymmetricCipher
from clinicauth.service.csrf import CsrfGuard, CsrfSessionStore, MemoryCsrfStore
from clinicauth.service.tokens import TokenCodec
from clinicauth.storage.memory import MemoryStore
from clinicauth.storage.postgres import PostgresStore
from clinicauth.storage.redis_cache import RedisCache, RedisCsrfStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.memory_store_path)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[RedisCache] = None
        redis_error: Exception | None = None
        if self.settings.redis_url and not self.settings.use_memory_store:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        csrf_store: CsrfSessionStore
        if self.cache:
            csrf_store = RedisCsrfStore(self.cache)
        else:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for CSRF session state; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_not_used",
                message=(
                    f"Running without Redis under {fallback_mode}; CSRF tokens are "
                    "process-local and lost on restart."
                ),
                mode=fallback_mode,
            )
            csrf_store = MemoryCsrfStore()

        self.csrf = CsrfGuard(csrf_store, ttl=self.settings.csrf_ttl)
        self.cipher = SymmetricCipher(self.settings.encryption_key, self.settings.hash_secret)
        self.tokens = TokenCodec(
            self.settings.jwt_secret,
            self.settings.jwt_issuer,
            self.settings.jwt_access_ttl,
        )
        self.auth = AuthService(
            self.store, self.csrf, self.cipher, self.tokens, self.settings
        )
        logger.info("runtime_init_completed", redis=bool(self.cache))

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.close()
        runtime = Runtime()
        return runtime
