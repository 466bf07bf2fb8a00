"""
Cache for AI field mappings.

The AI mapping service depends on the MappingCache interface so tests can
use an isolated instance and deployments can plug in a shared store.
"""
import threading
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600


@dataclass(frozen=True)
class CacheEntry:
    field: str
    confidence: float
    expires_at: float


class MappingCache(ABC):
    """Key/value store for raw header -> mapped field, with per-entry TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Live entry for key, or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, field: str, confidence: float, ttl_seconds: float) -> CacheEntry:
        """Store an entry; a live entry is kept as is, an expired one is overwritten."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""


class TTLMappingCache(MappingCache):
    """
    In-process cache guarded by a lock.

    Expiry is checked at read time; there is no background eviction.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                return None
            return entry

    def set(self, key: str, field: str, confidence: float, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> CacheEntry:
        with self._lock:
            now = self._clock()
            current = self._entries.get(key)
            if current is not None and current.expires_at > now:
                return current
            entry = CacheEntry(field=field, confidence=confidence, expires_at=now + ttl_seconds)
            self._entries[key] = entry
            return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
