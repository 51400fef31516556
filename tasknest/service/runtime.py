from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from tasknest.config import AuthConfig, get_settings, reset_settings_cache
from tasknest.logging import get_logger
from tasknest.service.auth import AuthService
from tasknest.service.email import EmailService
from tasknest.service.security import Argon2PasswordHashing, SecretsTokenSource
from tasknest.service.todos import TodoService
from tasknest.service.tokens import TokenIssuer
from tasknest.service.users import UserService
from tasknest.service.verification import VerificationCodeStore
from tasknest.storage.local_cache import LocalCache
from tasknest.storage.memory import MemoryStore
from tasknest.storage.postgres import PostgresStore
from tasknest.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)

RATE_LIMIT_KEY_PREFIX = "rate_limit:"


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

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


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info(
                "runtime_store_initialized",
                store_type="memory" if self.settings.use_memory_store else "postgres",
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Sync client in test mode avoids binding to pytest's event loops
                if self.settings.test_mode:
                    cache = SyncRedisCache(self.settings.redis_url)
                else:
                    cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if (
                not self.settings.test_mode
                and not self.settings.allow_redis_fallback_dev
            ):
                raise RuntimeError(
                    "Redis is required for verification codes and rate limits; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error

            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; verification codes "
                    "and rate limits are in-process only."
                ),
                mode=fallback_mode,
            )
        self.local_cache = LocalCache()

        self.auth_config = AuthConfig.from_settings(self.settings)
        self.hashing = Argon2PasswordHashing()
        self.issuer = TokenIssuer(self.auth_config, SecretsTokenSource())
        self.codes = VerificationCodeStore(self.cache or self.local_cache, self.auth_config)
        self.email_service = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
        )
        self.auth = AuthService(
            self.store,
            self.codes,
            self.issuer,
            self.email_service,
            self.auth_config,
            hashing=self.hashing,
        )
        self.users = UserService(self.store, hashing=self.hashing)
        self.todos = TodoService(self.store)
        logger.info("runtime_init_completed", redis_enabled=self.cache is not None)

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        await self.local_cache.close()
        if hasattr(self.store, "close"):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the lock is only taken while the runtime is
    still being created.
    """
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
        if runtime is not None and runtime.cache is not None:
            try:
                if isinstance(runtime.cache, SyncRedisCache):
                    runtime.cache.disconnect()
                else:
                    try:
                        loop = asyncio.get_running_loop()
                        loop.create_task(runtime.cache.close())
                    except RuntimeError:
                        asyncio.run(runtime.cache.close())
            except Exception as exc:
                # Connection may already be closed
                logger.debug("runtime_cache_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


async def check_rate_limit(
    runtime: Runtime,
    key: str,
    limit: int,
    window_seconds: int,
) -> bool:
    """Count one request against a fixed window and report whether it is allowed.

    The first hit opens a window of ``window_seconds``; hits beyond ``limit``
    inside that window are rejected. Falls back to the in-process cache when
    Redis is disabled.
    """
    if limit <= 0:
        return True
    if window_seconds <= 0:
        logger.warning(
            "rate_limit_invalid_window",
            key=key,
            window_seconds=window_seconds,
            message="Invalid rate limit window_seconds; defaulting to 60 seconds",
        )
        window_seconds = 60
    backend = runtime.cache or runtime.local_cache
    count = await backend.incr_window(key, window_seconds)
    allowed = count <= limit
    if not allowed:
        logger.warning("rate_limit_exceeded", key=key, count=count, limit=limit)
    return allowed
