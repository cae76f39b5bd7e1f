"""HTTP fetch layer with caching, retries, and failure isolation.

This module provides:
- A process-lifetime cache with caller-chosen TTLs
- Configurable retry policy with capped exponential backoff
- Retry-After handling for rate-limited and overloaded providers
- Maximum response size enforcement
- Header and URL redaction for logging
- Metrics collection for observability
"""

from dashfeed.fetch.cache import (
    CachedFetcher,
    CacheEntry,
    CacheStats,
    CacheStore,
    InMemoryCacheStore,
    compute_cache_key,
)
from dashfeed.fetch.client import ResilientFetcher, parse_retry_after
from dashfeed.fetch.config import FetchConfig
from dashfeed.fetch.constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
)
from dashfeed.fetch.metrics import FetchMetrics
from dashfeed.fetch.models import (
    FetchError,
    FetchErrorClass,
    FetchResult,
    ResponseSizeExceededError,
    RetryPolicy,
)
from dashfeed.fetch.redact import redact_headers, redact_url


__all__ = [
    # Client
    "ResilientFetcher",
    "parse_retry_after",
    # Cache
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "CachedFetcher",
    "InMemoryCacheStore",
    "compute_cache_key",
    # Config
    "FetchConfig",
    # Models
    "FetchResult",
    "FetchError",
    "FetchErrorClass",
    "RetryPolicy",
    "ResponseSizeExceededError",
    # Constants
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_MAX_RESPONSE_SIZE_BYTES",
    "DEFAULT_TIMEOUT_SECONDS",
    # Metrics
    "FetchMetrics",
    # Redaction
    "redact_headers",
    "redact_url",
]
