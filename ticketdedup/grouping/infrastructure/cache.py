"""
Classification Cache
=====================

In-process TTL cache for classification results, keyed by normalized text.

Entries expire lazily on read; a periodic APScheduler job sweeps whatever
was never read again. The process-wide instance is created and torn down by
the application lifespan.
"""

import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ticketdedup.config import settings
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

V = TypeVar("V")


class ClassificationCache(Generic[V]):
    """
    Expiring key -> value map.

    Args:
        ttl_seconds: Default lifetime of an entry
        sweep_interval_seconds: Seconds between background sweeps
        clock: Returns the current time in seconds; injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        sweep_interval_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[V, float]] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[V]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._clock() > expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + ttl)

    def sweep(self) -> int:
        """Evict expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Classification cache swept", extra={"evicted": len(expired)})
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    async def start(self) -> None:
        """Schedule the periodic sweep."""
        if self._scheduler is not None:
            logger.warning("Classification cache sweeper already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self.sweep_interval_seconds,
            id="classification_cache_sweep",
            name="Classification Cache Sweep",
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        logger.info(
            "Classification cache sweeper started",
            extra={"interval_seconds": self.sweep_interval_seconds, "ttl_seconds": self.ttl_seconds}
        )

    async def shutdown(self) -> None:
        """Stop the sweeper and drop every entry."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.clear()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None


_classification_cache: Optional[ClassificationCache] = None


async def init_classification_cache(
    ttl_seconds: Optional[int] = None,
    sweep_interval_seconds: Optional[int] = None
) -> ClassificationCache:
    """Create and start the process-wide cache."""
    global _classification_cache
    if _classification_cache is not None:
        await _classification_cache.shutdown()

    _classification_cache = ClassificationCache(
        ttl_seconds=ttl_seconds or settings.classification_cache_ttl_seconds,
        sweep_interval_seconds=sweep_interval_seconds or settings.cache_sweep_interval_seconds,
    )
    await _classification_cache.start()
    return _classification_cache


def get_classification_cache() -> ClassificationCache:
    """
    Get the process-wide cache.

    Raises:
        RuntimeError: If init_classification_cache() has not run
    """
    if _classification_cache is None:
        raise RuntimeError("Classification cache not initialized. Call init_classification_cache() first.")
    return _classification_cache


async def shutdown_classification_cache() -> None:
    global _classification_cache
    if _classification_cache is not None:
        await _classification_cache.shutdown()
        _classification_cache = None
