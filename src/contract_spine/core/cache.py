"""
ETag-aware content cache.

Stores fetched content per resource path together with the validation
token (ETag) the backend sent with it. The client sends that token back
as ``If-None-Match``; a ``304 Not Modified`` answer confirms the cached
payload and only refreshes its ``stored_at`` time.

Manifesto:
    - **Protocol-based:** ``CacheBackend`` defines the storage contract
    - **Bounded:** LRU eviction past ``max_entries``
    - **Wholesale replacement:** Entries are frozen ``CacheEntry`` values;
      a refresh stores a new entry instead of editing the old one
    - **Writes invalidate:** ``update_content`` drops the path first

Architecture:
    ::

        ContentCache
          ├── get(path)                  → CacheEntry | None
          ├── put(path, payload, etag)   → CacheEntry (None if the path changed since if_version)
          ├── version(path)              → int, advanced by every invalidation
          ├── touch(path)                → CacheEntry | None (new stored_at)
          ├── invalidate(path)
          └── backend: CacheBackend (Protocol)
                └── InMemoryCache — single-process, bounded LRU

    Listing responses never reach the cache: they are point-in-time views.

Examples:
    >>> cache = ContentCache(max_entries=100)
    >>> cache.put("levels/1", {"name": "Forest"}, etag='"v1"')
    CacheEntry(path='levels/1', payload={'name': 'Forest'}, etag='"v1"', stored_at=...)
    >>> cache.get("levels/1").etag
    '"v1"'

Tags:
    cache, etag, conditional-request, lru, contract-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import itertools
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace
from typing import Any, Protocol

from contract_spine.core.logging import get_logger
from contract_spine.core.models import CacheEntry

logger = get_logger(__name__)


class CacheBackend(Protocol):
    """Protocol for cache storage implementations."""

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key, ``None`` if absent."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous one."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if the key does not exist."""
        ...

    def clear(self) -> None:
        """Remove all keys."""
        ...

    def size(self) -> int:
        """Number of stored keys."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Backend
# ------------------------------------------------------------------ #


class InMemoryCache:
    """Bounded in-memory LRU store.

    Attributes:
        max_size: Maximum number of keys before LRU eviction.
    """

    def __init__(self, *, max_size: int = 10_000):
        self._store: OrderedDict[str, Any] = OrderedDict()
        self._max_size = max_size

    def get(self, key: str) -> Any | None:
        if key not in self._store:
            return None
        self._store.move_to_end(key)
        return self._store[key]

    def set(self, key: str, value: Any) -> None:
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self._max_size:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("cache.evicted", key=evicted)
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def size(self) -> int:
        return len(self._store)


# ------------------------------------------------------------------ #
# Content Cache
# ------------------------------------------------------------------ #


class ContentCache:
    """Cache of content payloads keyed by resource path.

    Every ``invalidate`` (and ``clear``) advances the path's version. A
    fetch reads ``version(path)`` before going to the backend and passes it
    to ``put(..., if_version=...)``, so a response that was already in flight
    when a write invalidated the path is not stored over it.

    Args:
        max_entries: LRU bound when no backend is supplied.
        backend: Storage implementation (defaults to :class:`InMemoryCache`).
        clock: Wall-clock source for ``stored_at`` (injectable for tests).
    """

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend if backend is not None else InMemoryCache(max_size=max_entries)
        self._clock = clock
        self._invalidations = itertools.count(1)
        self._invalidated_at: dict[str, int] = {}
        self._cleared_at = 0

    def get(self, path: str) -> CacheEntry | None:
        """Return the entry for ``path``, or ``None``."""
        return self._backend.get(path)

    def version(self, path: str) -> int:
        """Marker that changes whenever ``path`` is invalidated."""
        return max(self._invalidated_at.get(path, 0), self._cleared_at)

    def put(
        self, path: str, payload: Any, etag: str | None, *, if_version: int | None = None
    ) -> CacheEntry | None:
        """Store ``payload`` for ``path``, replacing any previous entry.

        With ``if_version`` nothing is stored (and ``None`` returned) when the
        path was invalidated since that version was read.
        """
        if if_version is not None and self.version(path) != if_version:
            logger.debug("cache.stale_put_skipped", path=path, etag=etag)
            return None
        entry = CacheEntry(path=path, payload=payload, etag=etag, stored_at=self._clock())
        self._backend.set(path, entry)
        logger.debug("cache.stored", path=path, etag=etag)
        return entry

    def touch(self, path: str) -> CacheEntry | None:
        """Confirm the cached payload is current: refresh ``stored_at`` only."""
        entry = self._backend.get(path)
        if entry is None:
            return None
        refreshed = replace(entry, stored_at=self._clock())
        self._backend.set(path, refreshed)
        logger.debug("cache.revalidated", path=path, etag=entry.etag)
        return refreshed

    def invalidate(self, path: str) -> None:
        """Drop the entry for ``path`` (no-op when absent)."""
        self._backend.delete(path)
        self._invalidated_at[path] = next(self._invalidations)
        logger.debug("cache.invalidated", path=path)

    def clear(self) -> None:
        self._backend.clear()
        self._invalidated_at.clear()
        self._cleared_at = next(self._invalidations)

    def size(self) -> int:
        return self._backend.size()

    def __contains__(self, path: str) -> bool:
        return self._backend.get(path) is not None


__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "ContentCache",
]
