"""Process-local TTL cache for runtime settings.

Each process keeps its own copy and refreshes it when the TTL expires, so
instances never need to coordinate invalidation; a write through the admin API
invalidates the local copy immediately and other processes catch up within one
TTL.
"""
import asyncio
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SettingsCache(Generic[T]):
    """Cached value with refresh-on-expiry."""

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        default: T,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            loader: Coroutine function producing a fresh value
            default: Value served when nothing has ever loaded successfully
            ttl_seconds: Seconds a loaded value stays fresh
            clock: Monotonic clock, injectable for tests
        """
        self._loader = loader
        self._default = default
        self._ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        return self._loaded_at is not None and self._clock() - self._loaded_at < self._ttl

    async def get(self) -> T:
        """
        Return the cached value, reloading it if expired.

        A failed reload serves the last good value (or the default) and is
        retried on the next call.
        """
        if self._fresh():
            return self._value

        async with self._lock:
            if self._fresh():
                return self._value
            try:
                value = await self._loader()
            except Exception as e:
                logger.warning("settings_cache_load_failed", error=str(e))
                return self._value if self._value is not None else self._default
            self._value = value
            self._loaded_at = self._clock()
            logger.debug("settings_cache_refreshed")
            return value

    def invalidate(self) -> None:
        """Drop the cached value; the next ``get`` reloads."""
        self._loaded_at = None
