"""Process-lifetime response cache and the cached fetch path.

The store maps a request fingerprint to the decoded payload and the time it
was fetched. Freshness is decided at read time against the caller's TTL, so
one entry can serve callers with different tolerances.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from dashfeed.fetch.client import ResilientFetcher
from dashfeed.fetch.constants import DEFAULT_CACHE_TTL_SECONDS
from dashfeed.fetch.metrics import FetchMetrics
from dashfeed.fetch.models import FetchResult


if TYPE_CHECKING:
    from dashfeed.sources.models import SourceDescriptor


logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload for one request fingerprint."""

    key: str
    payload: Any
    fetched_at: float

    def age_seconds(self, now: float) -> float:
        """Seconds elapsed since the payload was fetched."""
        return now - self.fetched_at

    def is_fresh(self, ttl_seconds: float, now: float) -> bool:
        """Check freshness against a caller-supplied TTL.

        Args:
            ttl_seconds: Maximum acceptable age.
            now: Current time on the store's clock.

        Returns:
            True if the entry is younger than the TTL.
        """
        return self.age_seconds(now) < ttl_seconds


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache occupancy classified at the default TTL."""

    total: int
    fresh: int
    stale: int

    def to_dict(self) -> dict[str, int]:
        """Convert stats to dictionary.

        Returns:
            Dictionary with total, fresh and stale counts.
        """
        return {"total": self.total, "fresh": self.fresh, "stale": self.stale}


class CacheStore(Protocol):
    """Protocol for cache storage operations.

    Abstracts the backing store so tests use isolated instances and
    deployments can swap in an external cache without touching call sites.
    """

    def now(self) -> float:
        """Current time on the store's clock."""
        ...

    def get(self, key: str) -> CacheEntry | None:
        """Retrieve the entry for a key, fresh or stale.

        Args:
            key: Request fingerprint.

        Returns:
            Cached entry if present, None otherwise.
        """
        ...

    def put(self, key: str, payload: Any) -> None:
        """Store a payload, stamping it with the current time.

        Args:
            key: Request fingerprint.
            payload: Decoded response body.
        """
        ...

    def stats(self) -> CacheStats:
        """Count entries and classify them at the default TTL."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...


class InMemoryCacheStore:
    """Thread-safe in-memory cache store.

    Entries live for the lifetime of the instance; nothing is evicted. The
    key space is the bounded set of provider endpoints in the source catalog,
    so no size bound or LRU policy is applied.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            default_ttl_seconds: TTL used to classify entries in stats().
            clock: Wall-clock source in seconds.
        """
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def default_ttl_seconds(self) -> float:
        """Get the TTL used for stats classification."""
        return self._default_ttl_seconds

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, payload: Any) -> None:
        entry = CacheEntry(key=key, payload=payload, fetched_at=self._clock())
        with self._lock:
            self._entries[key] = entry

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
        fresh = sum(1 for e in entries if e.is_fresh(self._default_ttl_seconds, now))
        return CacheStats(total=len(entries), fresh=fresh, stale=len(entries) - fresh)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def compute_cache_key(descriptor: SourceDescriptor) -> str:
    """Compute the deterministic fingerprint of a source request.

    The fingerprint covers the URL and headers; the method and JSON body are
    included only when they distinguish the request from a plain GET.

    Args:
        descriptor: Source whose request is fingerprinted.

    Returns:
        SHA-256 hex digest of the normalized request.
    """
    request = descriptor.request
    parts: dict[str, Any] = {
        "url": descriptor.url,
        "headers": sorted((k.lower(), v) for k, v in request.headers.items()),
    }
    if request.method.value != "GET":
        parts["method"] = request.method.value
    if request.json_body is not None:
        parts["body"] = request.json_body

    content = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class _InFlightCall:
    """A network fetch other callers can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: FetchResult | None = None


class CachedFetcher:
    """Serves fresh cache hits and fetches, stores, and returns otherwise.

    Failed fetches are never cached, so the next call retries instead of
    serving a stale failure. Two concurrent misses on the same cold key both
    go to the network unless single-flight is enabled, in which case the
    later caller waits for the earlier caller's result.
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: ResilientFetcher,
        single_flight: bool = False,
    ) -> None:
        """Initialize the cached fetcher.

        Args:
            store: Cache backend.
            fetcher: Network fetcher used on misses.
            single_flight: Coalesce concurrent misses for the same key.
        """
        self._store = store
        self._fetcher = fetcher
        self._single_flight = single_flight
        self._inflight: dict[str, _InFlightCall] = {}
        self._inflight_lock = threading.Lock()
        self._metrics = FetchMetrics.get_instance()
        self._log = logger.bind(component="cache")

    @property
    def store(self) -> CacheStore:
        """Get the cache backend."""
        return self._store

    def fetch(self, descriptor: SourceDescriptor) -> FetchResult:
        """Fetch a source through the cache.

        Args:
            descriptor: Source to fetch.

        Returns:
            FetchResult; from_cache is True when no network call was made.
        """
        key = compute_cache_key(descriptor)

        entry = self._store.get(key)
        if entry is not None:
            now = self._store.now()
            if entry.is_fresh(descriptor.ttl_seconds, now):
                self._metrics.record_cache_hit()
                self._log.debug(
                    "cache_hit",
                    source=descriptor.name,
                    age_seconds=round(entry.age_seconds(now), 3),
                    ttl_seconds=descriptor.ttl_seconds,
                )
                return FetchResult(
                    url=descriptor.url,
                    status_code=200,
                    payload=entry.payload,
                    from_cache=True,
                )

        self._metrics.record_cache_miss()
        self._log.debug("cache_miss", source=descriptor.name, stale=entry is not None)

        if not self._single_flight:
            return self._fetch_and_store(descriptor, key)
        return self._fetch_single_flight(descriptor, key)

    def _fetch_and_store(self, descriptor: SourceDescriptor, key: str) -> FetchResult:
        result = self._fetcher.fetch(descriptor)
        if result.is_success:
            self._store.put(key, result.payload)
        return result

    def _fetch_single_flight(
        self, descriptor: SourceDescriptor, key: str
    ) -> FetchResult:
        with self._inflight_lock:
            call = self._inflight.get(key)
            leader = call is None
            if call is None:
                call = _InFlightCall()
                self._inflight[key] = call

        if not leader:
            self._metrics.record_single_flight_shared()
            self._log.debug("single_flight_join", source=descriptor.name)
            call.done.wait()
            if call.result is not None:
                return call.result
            # Leader failed without a result; fetch independently.
            return self._fetch_and_store(descriptor, key)

        try:
            call.result = self._fetch_and_store(descriptor, key)
            return call.result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            call.done.set()
