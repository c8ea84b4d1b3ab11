"""Time-bounded memo of role name -> permission set.

Entries are filled on miss and expire after the TTL; edits to a role definition are not pushed
into the cache, so a cached role may serve permissions up to one TTL old. User branch
assignments are never cached here.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional
import threading
import time

from groomery.constants.permissions import Permission

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry:
    permissions: FrozenSet[Permission]
    expires_at: float


class PermissionCache:

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError('TTL must be positive')
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, role_name: str) -> Optional[FrozenSet[Permission]]:
        with self._lock:
            entry = self._entries.get(role_name)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[role_name]
                self.misses += 1
                return None
            self.hits += 1
            return entry.permissions

    def put(self, role_name: str, permissions) -> FrozenSet[Permission]:
        frozen = frozenset(permissions)
        with self._lock:
            self._entries[role_name] = CacheEntry(frozen, self._clock() + self.ttl_seconds)
        return frozen

    def get_or_load(self, role_name: str, loader: Callable[[str], FrozenSet[Permission]]) -> FrozenSet[Permission]:
        cached = self.get(role_name)
        if cached is not None:
            return cached
        # loader runs outside the lock; concurrent misses may both load, last writer wins
        return self.put(role_name, loader(role_name))

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            size, hits, misses = len(self._entries), self.hits, self.misses
        total = hits + misses
        return {
            'size': size,
            'hits': hits,
            'misses': misses,
            'hit_rate': (hits / total) if total else 0.0,
        }
