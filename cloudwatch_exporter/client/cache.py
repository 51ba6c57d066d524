"""In-memory TTL caches for metric responses and resource tags."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar


V = TypeVar('V')

# Metric values are fresh enough for one scrape window; tags change far less often
RESPONSE_CACHE_TTL = 30.0
TAG_CACHE_TTL = 300.0


@dataclass
class CacheEntry:
    """A cached payload and the time it was stored."""

    payload: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class ResourceTags:
    """Tags of one resource and the region it was found in ("" if unknown)."""

    tags: Dict[str, str] = field(default_factory=dict)
    region: str = ""


class TTLCache(Generic[V]):
    """
    Thread-safe mapping whose entries expire after a fixed TTL.

    Expired entries are reported as missing by get() but stay in memory
    until they are overwritten or removed by sweep().
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl: Entry lifetime in seconds
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Tuple[Optional[V], bool]:
        """Return (value, True) for a live entry, (None, False) otherwise."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None, False
            return entry.payload, True

    def set(self, key: Hashable, value: V) -> None:
        """Store value under key, replacing any previous entry."""
        entry = CacheEntry(payload=value, created_at=self._clock(), ttl=self.ttl)
        with self._lock:
            self._entries[key] = entry

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        """Physical presence, regardless of expiry."""
        with self._lock:
            return key in self._entries


class ResponseCache(TTLCache):
    """Short-lived cache of raw fetch-metric results."""

    def __init__(self, ttl: float = RESPONSE_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl, clock)

    @staticmethod
    def key(namespace: str, metric_name: str) -> str:
        return f"{namespace}:{metric_name}"


class TagCache(TTLCache):
    """Per-resource tag cache; not-found resources are stored as empty ResourceTags."""

    def __init__(self, ttl: float = TAG_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl, clock)
