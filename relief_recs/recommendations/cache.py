"""
Multi-tier TTL cache for directory calls and finished recommendations.

Namespaces and default TTLs:
  - search:          6 hours
  - browse:          6 hours
  - details:        24 hours
  - recommendation:  1 hour

Keys are derived from normalized parameters so logically identical calls hit
the same entry regardless of argument order or casing. The cache is an
explicit service instance handed to every component that needs it.

A failing backend never fails a request: reads degrade to misses and writes
are skipped.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from .. import constants
from ..errors import CacheUnavailable

logger = logging.getLogger(__name__)

NAMESPACES = ("search", "browse", "details", "recommendation")


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


# ============================================================================
# Backends
# ============================================================================


class InMemoryCacheBackend:
    """Process-local store. One lock guards the dict; oldest entry evicted at capacity."""

    def __init__(self, max_entries: int = constants.CACHE_MAX_ENTRIES):
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                self.evictions += 1
            self._entries[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def size(self, prefix: str = "") -> int:
        with self._lock:
            if not prefix:
                return len(self._entries)
            return sum(1 for k in self._entries if k.startswith(prefix))


class NullCacheBackend:
    """Stores nothing. Every read is a miss."""

    evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        return None

    def set(self, key: str, entry: CacheEntry) -> None:
        return None

    def delete(self, key: str) -> bool:
        return False

    def clear(self) -> None:
        return None

    def purge_expired(self, now: float) -> int:
        return 0

    def size(self, prefix: str = "") -> int:
        return 0


# ============================================================================
# Key normalization
# ============================================================================


def _normalize(value: Any) -> Any:
    """Canonical form: strings trimmed/lowercased, collections sorted, None dropped."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0])) if v is not None}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v) for v in value if v is not None]
        items = [v for v in items if v != ""]
        unique = {json.dumps(v, sort_keys=True, default=str): v for v in items}
        return [unique[k] for k in sorted(unique)]
    return value


def make_key(namespace: str, **params) -> str:
    """
    Deterministic cache key for a namespace and call parameters.

    Examples:
        >>> make_key("search", term="Earthquake ", causes=["b", "a"]) == make_key("search", causes=["a", "b"], term="earthquake")
        True
    """
    payload = json.dumps(_normalize(params), sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{namespace}:{digest}"


# ============================================================================
# Facade
# ============================================================================


class RecommendationCache:
    """
    Thread-safe TTL cache shared by the generator, enricher and orchestrator.

    Values must be immutable snapshots (frozen models, tuples); lists are
    stored as tuples so a reader can never mutate a cached value.
    """

    def __init__(
        self,
        backend=None,
        ttls: Optional[Dict[str, int]] = None,
        max_entries: int = constants.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        purge_interval: float = constants.CACHE_PURGE_INTERVAL_SECONDS,
    ):
        """
        Initialize the cache.

        Args:
            backend: Storage backend (default: in-memory with max_entries)
            ttls: Per-namespace TTL overrides in seconds
            max_entries: Capacity of the default in-memory backend
            clock: Time source (tests pass a controllable clock)
            purge_interval: Minimum seconds between expired-entry sweeps
        """
        self.backend = backend if backend is not None else InMemoryCacheBackend(max_entries)
        self.ttls = dict(constants.CACHE_TTL_SECONDS)
        if ttls:
            self.ttls.update(ttls)
        self._clock = clock
        self.purge_interval = purge_interval
        self._last_purge = clock()
        self._stats_lock = threading.Lock()
        self._counters: Dict[str, Dict[str, int]] = {}
        self._errors = 0
        self._reset_counters()

    make_key = staticmethod(make_key)

    def _reset_counters(self):
        with self._stats_lock:
            self._counters = {ns: {"hits": 0, "misses": 0, "sets": 0} for ns in NAMESPACES}
            self._errors = 0

    def _count(self, namespace: str, field: str):
        with self._stats_lock:
            self._counters.setdefault(namespace, {"hits": 0, "misses": 0, "sets": 0})[field] += 1

    def _backend_failed(self, error: CacheUnavailable):
        with self._stats_lock:
            self._errors += 1
        logger.warning(f"{error}, continuing without cache")

    def _backend_call(self, operation: str, fn: Callable, *args):
        """Run a backend operation; any backend failure surfaces as CacheUnavailable."""
        try:
            return fn(*args)
        except CacheUnavailable:
            raise
        except Exception as e:
            raise CacheUnavailable(f"Cache backend {operation} failed: {e}") from e

    @staticmethod
    def _full_key(namespace: str, key: str) -> str:
        return key if key.startswith(f"{namespace}:") else f"{namespace}:{key}"

    def get(self, namespace: str, key: str) -> Optional[Any]:
        """Cached value, or None on miss, expiry, or backend failure."""
        full_key = self._full_key(namespace, key)
        try:
            entry = self._backend_call("get", self.backend.get, full_key)
        except CacheUnavailable as e:
            self._backend_failed(e)
            self._count(namespace, "misses")
            return None

        if entry is None:
            self._count(namespace, "misses")
            return None

        if entry.expires_at <= self._clock():
            try:
                self._backend_call("delete", self.backend.delete, full_key)
            except CacheUnavailable as e:
                self._backend_failed(e)
            self._count(namespace, "misses")
            return None

        self._count(namespace, "hits")
        return entry.value

    def set(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value; skipped silently (with a warning) if the backend is down."""
        if isinstance(value, list):
            value = tuple(value)
        ttl = self.ttls.get(namespace, constants.CACHE_TTL_SECONDS["recommendation"]) if ttl is None else ttl
        now = self._clock()

        try:
            entry = CacheEntry(value=value, expires_at=now + ttl)
            self._backend_call("set", self.backend.set, self._full_key(namespace, key), entry)
        except CacheUnavailable as e:
            self._backend_failed(e)
            return

        self._count(namespace, "sets")
        if now - self._last_purge >= self.purge_interval:
            self.purge_expired()

    def get_or_load(self, namespace: str, key: str, loader: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Return the cached value, or call loader and cache its result.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(namespace, key)
        if cached is not None:
            return cached

        value = loader()
        self.set(namespace, key, value, ttl=ttl)
        return tuple(value) if isinstance(value, list) else value

    def delete(self, namespace: str, key: str) -> bool:
        try:
            return self._backend_call("delete", self.backend.delete, self._full_key(namespace, key))
        except CacheUnavailable as e:
            self._backend_failed(e)
            return False

    def clear(self) -> None:
        """Drop every entry and reset hit/miss counters."""
        try:
            self._backend_call("clear", self.backend.clear)
        except CacheUnavailable as e:
            self._backend_failed(e)
        self._reset_counters()
        logger.info("Cache cleared")

    def purge_expired(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock()
        self._last_purge = now
        try:
            removed = self._backend_call("purge", self.backend.purge_expired, now)
        except CacheUnavailable as e:
            self._backend_failed(e)
            return 0
        if removed:
            logger.debug(f"Purged {removed} expired cache entries")
        return removed

    def stats(self) -> Dict[str, Any]:
        """Aggregate and per-namespace counters with hit rate."""
        with self._stats_lock:
            counters = {ns: dict(c) for ns, c in self._counters.items()}
            errors = self._errors

        namespaces = {}
        for ns, c in counters.items():
            try:
                size = self._backend_call("size", self.backend.size, f"{ns}:")
            except CacheUnavailable as e:
                self._backend_failed(e)
                size = 0
            namespaces[ns] = {**c, "size": size, "hit_rate": _hit_rate(c["hits"], c["misses"])}

        hits = sum(c["hits"] for c in counters.values())
        misses = sum(c["misses"] for c in counters.values())
        return {
            "hits": hits,
            "misses": misses,
            "sets": sum(c["sets"] for c in counters.values()),
            "size": sum(n["size"] for n in namespaces.values()),
            "hit_rate": _hit_rate(hits, misses),
            "evictions": getattr(self.backend, "evictions", 0),
            "errors": errors,
            "namespaces": namespaces,
        }


def _hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return round(hits / total, 4) if total else 0.0


__all__ = [
    "CacheEntry",
    "InMemoryCacheBackend",
    "NullCacheBackend",
    "RecommendationCache",
    "make_key",
]
