"""LRU + TTL cache for user memory, with batched write-behind persistence"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel

from .metrics import record_cache_lookup, record_flush
from .models import UserMemory

logger = structlog.get_logger(__name__)


class CacheEntry(BaseModel):
    """Cached snapshot of one user's memory"""
    payload: UserMemory
    cached_at: float
    approx_size_bytes: int


class MemoryCache:
    """Bounded LRU cache with per-entry TTL and approximate size accounting"""

    def __init__(self, capacity: int, ttl: float, max_bytes: int, clock: Callable[[], float] = time.time):
        self.capacity = capacity
        self.ttl = ttl
        self.max_bytes = max_bytes
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._total_bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._entries

    def keys(self) -> List[str]:
        """Keys from least to most recently used"""
        return list(self._entries.keys())

    def get(self, user_id: str) -> Optional[UserMemory]:
        entry = self._entries.get(user_id)
        if entry is None:
            self.misses += 1
            record_cache_lookup(False)
            return None

        if self._is_expired(entry):
            self._remove(user_id)
            self.misses += 1
            record_cache_lookup(False)
            logger.debug("Cache entry expired", user_id=user_id)
            return None

        self._entries.move_to_end(user_id)
        self.hits += 1
        record_cache_lookup(True)
        return entry.payload.model_copy(deep=True)

    def put(self, user_id: str, memory: UserMemory):
        """Insert or replace an entry, evicting the LRU entry when full"""
        if user_id in self._entries:
            self._remove(user_id)
        if self.capacity <= 0:
            return

        while self._entries and len(self._entries) >= self.capacity:
            victim, _ = self._pop_lru()
            logger.debug("Cache LRU eviction", user_id=victim)

        size = len(memory.model_dump_json())
        self._entries[user_id] = CacheEntry(
            payload=memory.model_copy(deep=True),
            cached_at=self._clock(),
            approx_size_bytes=size,
        )
        self._total_bytes += size

        if self._total_bytes > self.max_bytes:
            self._enforce_size_limit()

    def invalidate(self, user_id: str) -> bool:
        if user_id not in self._entries:
            return False
        self._remove(user_id)
        return True

    def purge_expired(self) -> int:
        expired = [user_id for user_id, entry in self._entries.items() if self._is_expired(entry)]
        for user_id in expired:
            self._remove(user_id)
        return len(expired)

    def clear(self):
        self._entries.clear()
        self._total_bytes = 0

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "capacity": self.capacity,
            "approx_bytes": self._total_bytes,
            "max_bytes": self.max_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }

    def _is_expired(self, entry: CacheEntry) -> bool:
        return entry.cached_at + self.ttl < self._clock()

    def _remove(self, user_id: str):
        entry = self._entries.pop(user_id)
        self._total_bytes -= entry.approx_size_bytes

    def _pop_lru(self):
        user_id, entry = self._entries.popitem(last=False)
        self._total_bytes -= entry.approx_size_bytes
        self.evictions += 1
        return user_id, entry

    def _enforce_size_limit(self):
        """Purge expired entries first, then LRU entries, until under the ceiling"""
        purged = self.purge_expired()
        evicted = 0
        while self._entries and self._total_bytes > self.max_bytes:
            self._pop_lru()
            evicted += 1
        logger.warning("Memory cache over size limit, entries dropped",
                       expired=purged, evicted=evicted, approx_bytes=self._total_bytes)


Writer = Callable[[str, UserMemory], Awaitable[None]]


class WriteBehindQueue:
    """Debounced batch of pending per-user memory snapshots"""

    def __init__(self, writer: Writer, interval: float, max_delay: float, clock: Callable[[], float] = time.time):
        self.writer = writer
        self.interval = interval
        self.max_delay = max_delay
        self._clock = clock
        self._pending: Dict[str, UserMemory] = {}
        self._first_pending_at: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None
        self.flushed_total = 0
        self.failed_total = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, user_id: str) -> bool:
        return user_id in self._pending

    def get_pending(self, user_id: str) -> Optional[UserMemory]:
        snapshot = self._pending.get(user_id)
        return snapshot.model_copy(deep=True) if snapshot is not None else None

    def schedule(self, user_id: str, snapshot: UserMemory):
        """Queue a snapshot and restart the debounce timer"""
        now = self._clock()
        self._pending[user_id] = snapshot.model_copy(deep=True)
        if self._first_pending_at is None:
            self._first_pending_at = now

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()

        # Never push the flush past max_delay from the oldest pending write
        remaining = max(0.0, self._first_pending_at + self.max_delay - now)
        self._timer = asyncio.create_task(self._flush_after(min(self.interval, remaining)))

    async def _flush_after(self, delay: float):
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._timer = None
        await self.flush_all()

    async def flush_all(self) -> Dict[str, Any]:
        """Write every pending snapshot concurrently; one failure does not block the rest"""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

        batch = self._pending
        self._pending = {}
        self._first_pending_at = None
        if not batch:
            return {"flushed": 0, "failed": 0, "errors": {}}

        results = await asyncio.gather(*(self._write_one(user_id, memory) for user_id, memory in batch.items()))
        errors = {user_id: error for user_id, error in results if error is not None}

        flushed = len(batch) - len(errors)
        self.flushed_total += flushed
        self.failed_total += len(errors)
        record_flush(flushed, len(errors))

        logger.info("Batched memory flush complete", flushed=flushed, failed=len(errors))
        return {"flushed": flushed, "failed": len(errors), "errors": errors}

    async def _write_one(self, user_id: str, memory: UserMemory):
        try:
            await self.writer(user_id, memory)
            return user_id, None
        except Exception as e:
            logger.error("Batched memory write failed", user_id=user_id, error=str(e))
            return user_id, str(e)

    def stats(self) -> Dict[str, Any]:
        return {
            "pending": len(self._pending),
            "flushed_total": self.flushed_total,
            "failed_total": self.failed_total,
            "interval_seconds": self.interval,
            "max_delay_seconds": self.max_delay,
        }
