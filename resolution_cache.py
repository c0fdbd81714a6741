"""Read-through payload cache for the resolution path, keyed by endpoint id."""

from __future__ import annotations

import copy
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Set, Tuple


logger = logging.getLogger("routeshape.cache")

Source = Tuple[str, str]


class ResolutionCache:
    """Bounded LRU of resolved payloads.

    Entries hold the payload and the data source it came from, never an API
    key, so rotating a key needs no eviction. Writes to an endpoint or to
    its template/schema evict synchronously through ``invalidate_*``. Every
    invalidation bumps a generation counter; a ``set`` carrying an older
    generation is dropped, so a slow load never re-caches a replaced payload.
    """

    def __init__(self, max_entries: int = 500, enabled: bool = True) -> None:
        self.max_entries = max(1, int(max_entries))
        self.enabled = enabled
        self._entries: "OrderedDict[str, Tuple[Source, Any]]" = OrderedDict()
        self._by_source: Dict[Source, Set[str]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._generation = 0

    def get(self, endpoint_id: str) -> tuple[bool, Any]:
        if not self.enabled:
            return False, None
        with self._lock:
            item = self._entries.get(endpoint_id)
            if item is None:
                self._misses += 1
                return False, None
            self._entries.move_to_end(endpoint_id)
            self._hits += 1
            return True, copy.deepcopy(item[1])

    def generation(self) -> int:
        """Token to take before loading a payload; pass it back to ``set``."""
        with self._lock:
            return self._generation

    def set(self, endpoint_id: str, payload: Any, source: Source, generation: int | None = None) -> None:
        if not self.enabled:
            return
        with self._lock:
            if generation is not None and generation != self._generation:
                # an invalidation ran while the payload was loading
                logger.debug("cache_set_stale endpoint=%s", endpoint_id)
                return
            self._drop(endpoint_id)
            self._entries[endpoint_id] = (source, copy.deepcopy(payload))
            self._by_source.setdefault(source, set()).add(endpoint_id)
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._drop(oldest)
                self._evictions += 1

    def _drop(self, endpoint_id: str) -> bool:
        item = self._entries.pop(endpoint_id, None)
        if item is None:
            return False
        ids = self._by_source.get(item[0])
        if ids is not None:
            ids.discard(endpoint_id)
            if not ids:
                del self._by_source[item[0]]
        return True

    def invalidate_endpoint(self, endpoint_id: str) -> None:
        with self._lock:
            self._generation += 1
            dropped = self._drop(endpoint_id)
        if dropped:
            logger.debug("cache_invalidate endpoint=%s", endpoint_id)

    def invalidate_source(self, kind: str, source_id: str) -> int:
        with self._lock:
            self._generation += 1
            ids = list(self._by_source.get((kind, source_id), ()))
            for endpoint_id in ids:
                self._drop(endpoint_id)
        if ids:
            logger.debug("cache_invalidate source=%s:%s endpoints=%s", kind, source_id, len(ids))
        return len(ids)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()
            self._by_source.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "enabled": self.enabled,
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
