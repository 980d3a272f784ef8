import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

Generation = Tuple[int, int]


class TTLCache:
    """
    Time-bounded map for read-only lookups.

    Entries expire ``ttl_seconds`` after they are stored. Writers are
    expected to call ``invalidate`` (or ``invalidate_prefix``) for every key
    their write affects. Invalidation bumps the key's generation, and
    ``get_or_load`` drops a loaded value whose key was invalidated while it
    was loading, so a read racing a write cannot cache the old value.

    A TTL of 0 disables caching entirely. Never use it for stock levels or
    anything on the reservation path.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._generations: Dict[Hashable, int] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def generation(self, key: Hashable) -> Generation:
        with self._lock:
            return self._generation(key)

    def _generation(self, key: Hashable) -> Generation:
        return self._epoch, self._generations.get(key, 0)

    def _bump(self, key: Hashable) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def get(self, key: Hashable) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                logger.debug(f"CACHE EXPIRED: {key}")
                return None
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any, generation: Optional[Generation] = None) -> bool:
        """Store value unless the key was invalidated since ``generation`` was taken"""
        if not self.enabled or value is None:
            return False
        with self._lock:
            if generation is not None and generation != self._generation(key):
                logger.debug(f"CACHE SKIPPED: {key} changed while loading")
                return False
            self._entries[key] = (self._clock(), value)
            return True

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            generation = self.generation(key)
            value = loader()
            self.set(key, value, generation=generation)
        return value

    def invalidate(self, *keys: Hashable) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)
                self._bump(key)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if isinstance(key, str) and key.startswith(prefix)]
            for key in stale:
                del self._entries[key]
            # Any load in flight may belong to the prefix
            self._epoch += 1
        if stale:
            logger.info(f"CACHE INVALIDATED: {len(stale)} entries cleared for {prefix}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._epoch += 1

    def __len__(self) -> int:
        return len(self._entries)
