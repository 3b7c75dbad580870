"""
Time-bounded cache for expensive chain queries.

Each cache kind holds exactly one live entry. A read inside the freshness
window returns the entry without touching the upstream; a read outside it
triggers one refresh that concurrent readers share.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30.0

class CacheKind(Enum):
    """Cached query kinds."""
    EPOCH_INFO = "epoch_info"

@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value with its fetch time."""
    value: T
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl

class TTLCache:
    """
    Keyed TTL cache with single-flight refresh.

    Loaders are registered per kind. ``get_or_refresh`` returns a fresh
    entry's value, or issues exactly one loader call per miss no matter
    how many callers are waiting. A failed refresh propagates the error
    to every waiter and leaves the previous entry untouched.
    """

    def __init__(self,
                 ttl: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("Cache TTL must be positive")

        self.ttl = ttl
        self._clock = clock
        self._loaders: Dict[CacheKind, Callable[[], Awaitable[Any]]] = {}
        self._entries: Dict[CacheKind, CacheEntry] = {}
        self._inflight: Dict[CacheKind, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._refresh_count = 0

    def register(self, kind: CacheKind, loader: Callable[[], Awaitable[Any]]) -> None:
        """Register the upstream loader for a cache kind."""
        self._loaders[kind] = loader

    def peek(self, kind: CacheKind) -> Optional[CacheEntry]:
        """Return the current entry, fresh or not, without refreshing."""
        return self._entries.get(kind)

    @property
    def refresh_count(self) -> int:
        """Number of upstream loads issued so far."""
        return self._refresh_count

    async def get_or_refresh(self, kind: CacheKind) -> Any:
        """
        Return a fresh value for ``kind``.

        The loader runs as its own task. Callers await it through
        ``asyncio.shield``, so a caller that times out or is cancelled
        leaves the refresh running for everyone else.

        Raises:
            KeyError: If no loader is registered for ``kind``
            Exception: Whatever the loader raised on a failed refresh
        """
        if kind not in self._loaders:
            raise KeyError(f"No loader registered for {kind.value}")

        async with self._lock:
            entry = self._entries.get(kind)
            if entry is not None and entry.is_fresh(self._clock()):
                return entry.value

            task = self._inflight.get(kind)
            if task is None:
                task = asyncio.ensure_future(self._refresh(kind))
                self._inflight[kind] = task
                task.add_done_callback(lambda done: self._settle(kind, done))

        return await asyncio.shield(task)

    async def _refresh(self, kind: CacheKind) -> Any:
        self._refresh_count += 1
        try:
            value = await self._loaders[kind]()
        except Exception as e:
            logger.warning("Cache refresh failed", kind=kind.value, error=str(e))
            raise

        async with self._lock:
            self._entries[kind] = CacheEntry(value=value, fetched_at=self._clock(), ttl=self.ttl)
        logger.debug("Cache refreshed", kind=kind.value)
        return value

    def _settle(self, kind: CacheKind, task: asyncio.Future) -> None:
        if self._inflight.get(kind) is task:
            del self._inflight[kind]
        if not task.cancelled():
            # mark retrieved so a failure nobody awaited is not reported
            task.exception()

    def invalidate(self, kind: Optional[CacheKind] = None) -> None:
        """Drop one entry, or all entries when ``kind`` is None."""
        if kind is None:
            self._entries.clear()
        else:
            self._entries.pop(kind, None)
