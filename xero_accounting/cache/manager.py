"""Namespaced read-through cache with a memory tier and optional SQLite layer."""

import asyncio
import json
import re
from collections import OrderedDict
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar, Union

import aiosqlite
import structlog
from pydantic import BaseModel

from .ttl import TTL, Duration, to_seconds

if TYPE_CHECKING:
    from xero_accounting.config.settings import Settings

logger = structlog.get_logger()

T = TypeVar("T")

KeyPattern = Union[str, re.Pattern, Callable[[str], bool]]

_MISSING = object()


class CacheStats(BaseModel):
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate percentage."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


class CacheEntry(BaseModel):
    """A single cache entry."""

    key: str
    value: Any
    created_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


class CacheManager:
    """Read-through cache: LRU memory tier, optionally backed by SQLite.

    All keys live under a namespace. In memory-only mode the manager owns its
    entries outright; with a db_path, entries are written through to SQLite so
    they survive across processes sharing the same file and namespace.

    Concurrent misses on one key each run their producer and the last write
    wins, unless single_flight is set, in which case concurrent callers await
    the one in-flight producer call.
    """

    def __init__(
        self,
        namespace: str,
        default_ttl: Duration = TTL.FIVE_MINUTES,
        db_path: Optional[Path] = None,
        max_memory_items: int = 1000,
        single_flight: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize cache manager.

        Args:
            namespace: Prefix isolating this cache user's keys
            default_ttl: TTL applied when a call site does not pass one
            db_path: Path to SQLite database (None for memory only)
            max_memory_items: Maximum items in memory tier (LRU eviction)
            single_flight: Coalesce concurrent misses for the same key
            clock: Source of the current time
        """
        if not namespace:
            raise ValueError("Cache namespace must be a non-empty string")

        self.namespace = namespace
        self._default_ttl = to_seconds(default_ttl)
        self._db_path = db_path
        self._max_memory = max_memory_items
        self._single_flight = single_flight
        self._clock = clock
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future] = {}
        self._enabled = True
        self._initialized = False
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def persistent(self) -> bool:
        return self._db_path is not None

    def disable(self) -> None:
        """Make every read a miss until enable() is called. Entries are kept."""
        self._enabled = False
        logger.info("Cache disabled", namespace=self.namespace)

    def enable(self) -> None:
        """Resume serving cached entries."""
        self._enabled = True
        logger.info("Cache enabled", namespace=self.namespace)

    async def get_or_fetch(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[Duration] = None,
        bypass_cache: bool = False,
    ) -> T:
        """Return the cached value for key, or produce, store and return it.

        Bypassed calls (per call or because the cache is disabled) run the
        producer and never write the cache. Producer errors propagate
        unchanged and leave nothing stored.

        Args:
            key: Cache key (non-empty)
            producer: Zero-argument coroutine function producing the value
            ttl: Override of the default TTL for this entry
            bypass_cache: Skip lookup and storage for this call

        Returns:
            Cached or freshly produced value
        """
        self._validate_key(key)

        if bypass_cache or not self._enabled:
            logger.debug("Cache bypassed", namespace=self.namespace, key=key[:60])
            return await producer()

        cached_value = await self._lookup(key)
        if cached_value is not _MISSING:
            self._stats.hits += 1
            logger.debug("Cache hit", namespace=self.namespace, key=key[:60])
            return cached_value

        self._stats.misses += 1
        logger.debug("Cache miss", namespace=self.namespace, key=key[:60])

        if self._single_flight:
            return await self._fetch_single_flight(key, producer, ttl)
        return await self._fetch_and_store(key, producer, ttl)

    async def invalidate(self, key: str) -> bool:
        """Remove the entry for key.

        Returns:
            True if an entry was removed, False if none existed
        """
        self._validate_key(key)

        removed = self._memory.pop(key, None) is not None

        if self._db_path is not None:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM cache_entries WHERE namespace = ? AND key = ?",
                    (self.namespace, key),
                )
                await db.commit()
                removed = removed or cursor.rowcount > 0

        logger.debug("Cache invalidate", namespace=self.namespace, key=key[:60], removed=removed)
        return removed

    async def invalidate_pattern(self, pattern: KeyPattern) -> int:
        """Remove every entry whose key matches pattern.

        Args:
            pattern: Compiled regex, regex string (re.search semantics) or a
                predicate over the key. Keys are matched without the namespace.

        Returns:
            Number of entries removed
        """
        matches = self._compile_matcher(pattern)

        keys = {k for k in self._memory if matches(k)}
        for key in keys:
            del self._memory[key]

        if self._db_path is not None:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                stored = [k for k in await self._stored_keys(db) if matches(k)]
                await db.executemany(
                    "DELETE FROM cache_entries WHERE namespace = ? AND key = ?",
                    [(self.namespace, k) for k in stored],
                )
                await db.commit()
                keys.update(stored)

        logger.debug("Cache pattern invalidate", namespace=self.namespace, count=len(keys))
        return len(keys)

    async def clear(self) -> int:
        """Remove all entries in the namespace. Statistics are kept.

        Returns:
            Number of entries cleared
        """
        keys = set(self._memory)
        self._memory.clear()

        if self._db_path is not None:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                keys.update(await self._stored_keys(db))
                await db.execute(
                    "DELETE FROM cache_entries WHERE namespace = ?", (self.namespace,)
                )
                await db.commit()

        logger.info("Cache cleared", namespace=self.namespace, count=len(keys))
        return len(keys)

    async def cleanup_expired(self) -> int:
        """Remove expired entries from cache.

        Returns:
            Number of entries removed
        """
        now = self._clock()

        expired = {k for k, v in self._memory.items() if not v.is_live(now)}
        for key in expired:
            del self._memory[key]

        if self._db_path is not None:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT key FROM cache_entries WHERE namespace = ? AND expires_at <= ?",
                    (self.namespace, _isoformat(now)),
                )
                expired.update(row[0] for row in await cursor.fetchall())
                await db.execute(
                    "DELETE FROM cache_entries WHERE namespace = ? AND expires_at <= ?",
                    (self.namespace, _isoformat(now)),
                )
                await db.commit()

        return len(expired)

    async def get_stats(self) -> CacheStats:
        """Get cache statistics.

        Returns:
            CacheStats with hit/miss counts and the number of live entries
        """
        now = self._clock()

        if self._db_path is not None:
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM cache_entries WHERE namespace = ? AND expires_at > ?",
                    (self.namespace, _isoformat(now)),
                )
                row = await cursor.fetchone()
                entry_count = row[0] if row else 0
        else:
            entry_count = sum(1 for entry in self._memory.values() if entry.is_live(now))

        return self._stats.model_copy(update={"entry_count": entry_count})

    def reset_stats(self) -> None:
        """Reset hit and miss counters."""
        self._stats = CacheStats()

    async def _fetch_and_store(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[Duration],
    ) -> T:
        value = await producer()
        await self._store(key, value, ttl)
        return value

    async def _fetch_single_flight(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[Duration],
    ) -> T:
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug("Cache joined in-flight fetch", namespace=self.namespace, key=key[:60])
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch_and_store(key, producer, ttl))
        task.add_done_callback(_retrieve_exception)
        self._in_flight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def _lookup(self, key: str) -> Any:
        """Return the live cached value for key, or _MISSING."""
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_live(now):
                self._memory.move_to_end(key)
                return entry.value
            # Expired, remove from memory
            del self._memory[key]

        if self._db_path is None:
            return _MISSING

        await self._ensure_initialized()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT value, created_at, expires_at FROM cache_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            row = await cursor.fetchone()
            if row is None:
                return _MISSING

            value, created_at, expires_at = row
            entry = CacheEntry(
                key=key,
                value=self._deserialize(value),
                created_at=datetime.fromisoformat(created_at),
                expires_at=datetime.fromisoformat(expires_at),
            )
            if entry.is_live(now):
                self._remember(entry)
                return entry.value

            await db.execute(
                "DELETE FROM cache_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            await db.commit()

        return _MISSING

    async def _store(self, key: str, value: Any, ttl: Optional[Duration]) -> None:
        ttl_seconds = to_seconds(ttl) if ttl is not None else self._default_ttl
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

        if self._db_path is None:
            self._remember(entry)
        else:
            # Encode before touching either tier so an unencodable value stores nothing
            serialized = self._serialize(value)
            self._remember(entry)
            await self._ensure_initialized()
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries
                    (namespace, key, value, created_at, expires_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        self.namespace,
                        key,
                        serialized,
                        _isoformat(entry.created_at),
                        _isoformat(entry.expires_at),
                    ),
                )
                await db.commit()

        logger.debug("Cache set", namespace=self.namespace, key=key[:60], ttl=ttl_seconds)

    def _remember(self, entry: CacheEntry) -> None:
        """Store entry in the memory tier, evicting the oldest beyond the limit."""
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self._max_memory:
            self._memory.popitem(last=False)

    async def _ensure_initialized(self) -> None:
        """Ensure database is initialized."""
        if self._initialized or self._db_path is None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_expires ON cache_entries(namespace, expires_at)"
            )
            await db.commit()

        self._initialized = True
        logger.debug("Cache database initialized", path=str(self._db_path))

    async def _stored_keys(self, db: aiosqlite.Connection) -> list[str]:
        cursor = await db.execute(
            "SELECT key FROM cache_entries WHERE namespace = ?", (self.namespace,)
        )
        return [row[0] for row in await cursor.fetchall()]

    @staticmethod
    def _validate_key(key: str) -> None:
        if not isinstance(key, str) or not key.strip():
            raise ValueError(f"Cache key must be a non-empty string, got {key!r}")

    @staticmethod
    def _compile_matcher(pattern: KeyPattern) -> Callable[[str], bool]:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        if isinstance(pattern, re.Pattern):
            return lambda key: pattern.search(key) is not None
        if callable(pattern):
            return pattern
        raise TypeError(f"Unsupported cache key pattern: {pattern!r}")

    def _serialize(self, value: Any) -> str:
        """Serialize value to JSON string."""
        return json.dumps(value, default=self._json_default)

    def _deserialize(self, value: str) -> Any:
        """Deserialize JSON string to value."""
        return json.loads(value)

    def _json_default(self, obj: Any) -> Any:
        """Default JSON serializer for complex types."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        elif hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
        raise TypeError(f"Cannot persist cache value of type {type(obj).__name__}")


def _retrieve_exception(task: asyncio.Future) -> None:
    # Mark the error as seen; waiters that are still attached re-raise it themselves
    if not task.cancelled():
        task.exception()


def _isoformat(moment: datetime) -> str:
    # Fixed precision keeps stored timestamps comparable as strings
    return moment.isoformat(timespec="microseconds")


def create_cache_manager(settings: "Settings") -> CacheManager:
    """Build the cache manager described by settings.

    Called once at process start (CLI invocation or API startup) and passed
    to whatever needs it.
    """
    manager = CacheManager(
        namespace=settings.cache_namespace,
        default_ttl=settings.cache_default_ttl,
        db_path=settings.cache_path if settings.cache_persist else None,
        max_memory_items=settings.cache_memory_max_items,
        single_flight=settings.cache_single_flight,
    )
    if not settings.cache_enabled:
        manager.disable()
    return manager
