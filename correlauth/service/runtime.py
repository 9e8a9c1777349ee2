from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from correlauth.config import Settings, StoreBackend, get_settings, reset_settings_cache
from correlauth.logging import get_logger
from correlauth.service.auth import RequestAuthenticator, UserCodec
from correlauth.service.correlation import CorrelationLifecycle, CorrelationStore
from correlauth.service.tokens import TokenCodec
from correlauth.storage.memory import MemoryStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> CorrelationStore:
    backend = settings.store_backend
    if backend is StoreBackend.REDIS:
        from correlauth.storage.redis_cache import RedisStore

        store = RedisStore(settings.redis_url)
        store.verify_connection()
        logger.info("runtime_store_initialized", store_type=backend.value, url=_mask_url_password(settings.redis_url))
        return store
    if backend is StoreBackend.POSTGRES:
        from correlauth.storage.postgres import PostgresStore

        store = PostgresStore(settings.database_url)
        logger.info("runtime_store_initialized", store_type=backend.value, url=_mask_url_password(settings.database_url))
        return store
    logger.info("runtime_store_initialized", store_type=backend.value)
    return MemoryStore()


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[CorrelationStore] = None,
        user_codec: Optional[UserCodec] = None,
    ) -> None:
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            store_backend=self.settings.store_backend.value,
            debug=self.settings.debug,
            test_mode=self.settings.test_mode,
        )
        if self.settings.debug and not self.settings.test_mode:
            logger.warning("auth_diagnostics_enabled")

        try:
            self.store = store if store is not None else build_store(self.settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=self.settings.store_backend.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.codec = TokenCodec.from_settings(self.settings)
        self.lifecycle = CorrelationLifecycle(self.store)
        self.authenticator = RequestAuthenticator(
            self.codec,
            self.lifecycle,
            user_codec,
            debug=self.settings.debug,
        )

    async def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = Runtime()
    return _runtime


def current_runtime() -> Optional[Runtime]:
    """Return the process-wide runtime without creating one."""
    return _runtime


def set_runtime(runtime: Runtime) -> Runtime:
    global _runtime
    with _runtime_lock:
        _runtime = runtime
    return runtime


def reset_runtime_for_tests() -> None:
    """Drop the cached runtime and settings so tests start clean."""

    global _runtime
    with _runtime_lock:
        _runtime = None
    reset_settings_cache()
