"""Cache backends that sync side effects invalidate."""

import threading
from abc import ABC, abstractmethod
from typing import Any

import structlog

log = structlog.stdlib.get_logger()


class CacheBackend(ABC):
    """Named caches evicted after a change; every operation is idempotent."""

    @abstractmethod
    def invalidate(self, cache_name: str, key: str) -> None:
        """Evict one key from a cache. Missing caches or keys are ignored."""

    @abstractmethod
    def clear(self, cache_name: str) -> None:
        """Evict every key from a cache."""


class InMemoryCache(CacheBackend):
    """Process-local caches, one dict per cache name."""

    def __init__(self) -> None:
        self._caches: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.evictions = 0

    def put(self, cache_name: str, key: str, value: Any) -> None:
        with self._lock:
            self._caches.setdefault(cache_name, {})[key] = value

    def get(self, cache_name: str, key: str) -> Any | None:
        with self._lock:
            return self._caches.get(cache_name, {}).get(key)

    def invalidate(self, cache_name: str, key: str) -> None:
        with self._lock:
            removed = self._caches.get(cache_name, {}).pop(key, None) is not None
            if removed:
                self.evictions += 1
        log.debug("cache_entry_invalidated", cache_name=cache_name, key=key, removed=removed)

    def clear(self, cache_name: str) -> None:
        with self._lock:
            entries = self._caches.pop(cache_name, {})
            self.evictions += len(entries)
        log.debug("cache_cleared", cache_name=cache_name, entries=len(entries))

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._caches)
