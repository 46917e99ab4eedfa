# cache.py
# Content-addressed render cache with TTL expiry, LRU bounds and optional zlib compression

import asyncio
import hashlib
import json
import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from loguru import logger

from progressive_render.app.core.Logging.log_context import short_id

from .exceptions import CacheError


@dataclass
class CacheEntry:
    """Represents a cached render output"""
    key: str
    value: Union[str, bytes]
    compressed: bool
    created_at: float
    ttl: Optional[int]
    size_bytes: int
    original_size: int

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if entry has expired"""
        if not self.ttl:
            return False
        now = time.time() if now is None else now
        return now - self.created_at >= self.ttl


def make_cache_key(document: str, data: Optional[Mapping[str, Any]] = None) -> str:
    """
    Derive the cache key of a document and its data context.

    Keys are SHA-256 digests over the document text and a canonical JSON
    serialization of the data (sorted keys, compact separators, ``str`` for
    values JSON cannot encode).

    Args:
        document: Markup text
        data: Data context

    Returns:
        Hex digest

    Raises:
        CacheError: If the data cannot be serialized (circular references, mixed key types)
    """
    try:
        payload = json.dumps(data or {}, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        raise CacheError(f"Cannot derive cache key: {e}") from e
    digest = hashlib.sha256()
    digest.update(document.encode('utf-8'))
    digest.update(b'\x00')
    digest.update(payload.encode('utf-8'))
    return digest.hexdigest()


class TemplateCache:
    """
    In-memory cache of rendered output keyed by document content and data.

    Expired entries are treated as misses and removed lazily, by
    ``sweep_expired`` or by the optional periodic sweeper. Entries that fail
    to decompress are discarded and reported as misses.
    """

    def __init__(self,
                 ttl_seconds: int = 3600,
                 max_entries: int = 1000,
                 compression_enabled: bool = True,
                 compression_level: int = 6,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the template cache.

        Args:
            ttl_seconds: Entry lifetime in seconds (0 disables expiry)
            max_entries: Maximum number of entries before LRU eviction
            compression_enabled: Store values zlib-compressed
            compression_level: zlib compression level
            clock: Time source
        """
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.default_ttl = ttl_seconds
        self.max_entries = max_entries
        self.compression_enabled = compression_enabled
        self.compression_level = compression_level
        self._clock = clock
        self.cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._sweeper_task: Optional[asyncio.Task] = None

        # Statistics
        self.stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'evictions': 0,
            'expired': 0,
            'corrupt': 0,
        }
        self._original_bytes = 0
        self._stored_bytes = 0

        logger.info(
            f"Template cache initialized: max_entries={max_entries}, TTL={ttl_seconds}s, "
            f"compression={'on' if compression_enabled else 'off'}"
        )

    # ------------------------------------------------------------------ access

    def get(self, document: str, data: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        """Get the cached output for a document and data context"""
        return self.get_by_key(make_cache_key(document, data))

    def set(self, document: str, data: Optional[Mapping[str, Any]], output: str,
            ttl: Optional[int] = None) -> str:
        """Store rendered output; returns the cache key"""
        key = make_cache_key(document, data)
        self.set_by_key(key, output, ttl)
        return key

    def get_by_key(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.stats['misses'] += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove_entry(key)
                self.stats['expired'] += 1
                self.stats['misses'] += 1
                return None

            try:
                value = self._decode(entry)
            except (zlib.error, UnicodeDecodeError, TypeError) as e:
                logger.warning(f"Discarding corrupt cache entry {short_id(key)}: {e}")
                self._remove_entry(key)
                self.stats['corrupt'] += 1
                self.stats['misses'] += 1
                return None

            self.cache.move_to_end(key)
            self.stats['hits'] += 1
            return value

    def set_by_key(self, key: str, output: str, ttl: Optional[int] = None) -> None:
        encoded = output.encode('utf-8')
        if self.compression_enabled:
            value: Union[str, bytes] = zlib.compress(encoded, self.compression_level)
            size_bytes = len(value)
        else:
            value = output
            size_bytes = len(encoded)

        with self._lock:
            if key in self.cache:
                self._remove_entry(key)
            while len(self.cache) >= self.max_entries:
                self._evict_lru()

            self.cache[key] = CacheEntry(
                key=key,
                value=value,
                compressed=self.compression_enabled,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
                size_bytes=size_bytes,
                original_size=len(encoded),
            )
            self.stats['sets'] += 1
            self._original_bytes += len(encoded)
            self._stored_bytes += size_bytes
        logger.debug(f"Cached output {short_id(key)} ({len(encoded)} -> {size_bytes} bytes)")

    def _decode(self, entry: CacheEntry) -> str:
        if entry.compressed:
            return zlib.decompress(entry.value).decode('utf-8')
        if not isinstance(entry.value, str):
            raise TypeError(f"Uncompressed entry holds {type(entry.value).__name__}")
        return entry.value

    # --------------------------------------------------------------- eviction

    def _evict_lru(self) -> bool:
        """Evict least recently used entry"""
        if not self.cache:
            return False
        key = next(iter(self.cache))
        self._remove_entry(key)
        self.stats['evictions'] += 1
        return True

    def _remove_entry(self, key: str):
        self.cache.pop(key, None)

    def sweep_expired(self) -> int:
        """Remove all expired entries; returns how many were removed"""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self.cache.items() if e.is_expired(now)]
            for key in expired:
                self._remove_entry(key)
            self.stats['expired'] += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> int:
        """Clear all cache entries; returns the number of entries removed"""
        with self._lock:
            count = len(self.cache)
            self.cache.clear()
        logger.info(f"Template cache cleared ({count} entries)")
        return count

    # ---------------------------------------------------------------- sweeper

    def start_sweeper(self, interval_seconds: float = 60.0) -> asyncio.Task:
        """Start a periodic expiry sweep on the running event loop"""
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return self._sweeper_task
        self._sweeper_task = asyncio.create_task(self._sweep_loop(interval_seconds))
        logger.debug(f"Cache sweeper started (interval={interval_seconds}s)")
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        task = self._sweeper_task
        self._sweeper_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Cache sweeper stopped")

    async def _sweep_loop(self, interval_seconds: float):
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep_expired()

    # ------------------------------------------------------------------ stats

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        with self._lock:
            lookups = self.stats['hits'] + self.stats['misses']
            hit_rate = self.stats['hits'] / lookups if lookups else 0.0
            ratio = self._original_bytes / self._stored_bytes if self._stored_bytes else 1.0
            return {
                'entries': len(self.cache),
                'max_entries': self.max_entries,
                'ttl_seconds': self.default_ttl,
                'compression_enabled': self.compression_enabled,
                'hit_rate': round(hit_rate, 4),
                'compression_ratio': round(ratio, 3),
                **self.stats,
            }

    def __len__(self) -> int:
        return len(self.cache)
