"""Bounded in-memory caches for pipeline snapshots and job logs."""

from __future__ import annotations

import collections
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator

    from pipeview.types import CacheEntry

__all__ = ["EntryCache"]

_logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


class EntryCache[K: Hashable, O]:
    """Keyed store of the last known fetch outcome, bounded by least-recent write.

    Entries are immutable, so replacing one is atomic from the reader's side: a
    reader sees either the old snapshot or the new one, never a mix. Entries
    never expire by time; they leave only through invalidate(), clear() or
    eviction once more than max_entries keys have been written.
    """

    _entries: collections.OrderedDict[K, CacheEntry[O]]
    _max_entries: int

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._entries = collections.OrderedDict()
        self._max_entries = max_entries

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, key: K) -> CacheEntry[O] | None:
        """Look up an entry. Does not change eviction order."""
        return self._entries.get(key)

    def put(self, key: K, entry: CacheEntry[O]) -> None:
        """Store an entry, overwriting any previous one for the key."""
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug("Evicted cache entry for %s", evicted)

    def invalidate(self, key: K) -> bool:
        """Remove the entry for key. Returns True if one was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))
