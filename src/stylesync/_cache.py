"""Internal response cache with TTL expiry and an insertion-ordered size bound."""

from __future__ import annotations

import copy
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached response value."""

    key: str
    value: Any
    stored_at: float
    etag: str | None = None

    def age(self, now: float) -> float:
        return now - self.stored_at


@dataclass(frozen=True, slots=True)
class CacheStats:
    enabled: bool
    size: int
    max_size: int
    ttl: float
    etag_count: int


class CacheStore:
    """Bounded key -> response cache.

    ``get`` never returns an entry whose age is ``>= ttl``. Expired entries
    are kept (until evicted or purged) so their ETag and value can be
    revalidated with a conditional request; ``get_stale`` exposes them.

    When full, the oldest-inserted entry is evicted first. Re-storing an
    existing key moves it to the newest position.
    """

    def __init__(
        self,
        *,
        ttl: float = 60.0,
        max_size: int = 100,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_size = max_size
        self._enabled = enabled
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ttl(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Disable the cache and drop everything it holds."""
        self._enabled = False
        self.clear()

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return entry.age(now) < self._ttl

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry for *key* if it is still fresh."""
        if not self._enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            return None
        return CacheEntry(key=entry.key, value=copy.deepcopy(entry.value), stored_at=entry.stored_at, etag=entry.etag)

    def get_stale(self, key: str) -> CacheEntry | None:
        """Return the entry for *key* regardless of its age."""
        if not self._enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        return CacheEntry(key=entry.key, value=copy.deepcopy(entry.value), stored_at=entry.stored_at, etag=entry.etag)

    def etag_for(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry.etag if entry is not None else None

    def set(self, key: str, value: Any, *, etag: str | None = None) -> None:
        if not self._enabled:
            return
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug("Cache full, evicted %s", evicted)
        self._entries[key] = CacheEntry(
            key=key,
            value=copy.deepcopy(value),
            stored_at=self._clock(),
            etag=etag,
        )

    def touch(self, key: str) -> CacheEntry | None:
        """Mark a revalidated entry (HTTP 304) as freshly stored."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        self.set(key, entry.value, etag=entry.etag)
        return self.get(key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop entries whose key matches the regular expression *pattern*.

        Without a pattern every entry is dropped. Returns the number removed.
        """
        if pattern is None:
            count = len(self._entries)
            self.clear()
            return count
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            _logger.debug("Cache invalidated %d entries matching %r", len(doomed), pattern)
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            enabled=self._enabled,
            size=len(self._entries),
            max_size=self._max_size,
            ttl=self._ttl,
            etag_count=sum(1 for entry in self._entries.values() if entry.etag),
        )
