"""Process-lifetime wiring of cache, fetcher, and coordinator."""

import time
from collections.abc import Callable
from types import TracebackType
from typing import Any

import httpx
import structlog

from dashfeed.fetch.cache import CachedFetcher, CacheStore, InMemoryCacheStore
from dashfeed.fetch.client import ResilientFetcher
from dashfeed.fetch.config import FetchConfig
from dashfeed.orchestrator.aggregator import (
    AggregationCoordinator,
    cache_control_header,
)
from dashfeed.orchestrator.models import AggregatedResult
from dashfeed.settings.app import AppSettings
from dashfeed.sources.catalog import build_dashboard_catalog, build_dashboard_transforms
from dashfeed.sources.models import SourceCatalog


logger = structlog.get_logger()


class DashboardService:
    """Owns the objects that must outlive a single dashboard request.

    Construct once per process and call get_dashboard_data() per request;
    the cache store is reused across requests for as long as the instance
    lives.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: AppSettings,
        store: CacheStore | None = None,
        client: httpx.Client | None = None,
        fetch_config: FetchConfig | None = None,
        catalog: SourceCatalog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings.
            store: Cache backend (in-memory if omitted).
            client: Shared httpx client (created and owned if omitted).
            fetch_config: Fetch tuning (derived from settings if omitted).
            catalog: Sources to query (dashboard catalog if omitted).
            sleep: Blocking sleep for retries and inter-item delays.
        """
        self._settings = settings
        self._fetch_config = fetch_config or FetchConfig(
            default_ttl_seconds=settings.cache_ttl_seconds,
            single_flight=settings.single_flight,
        )
        self._store = store or InMemoryCacheStore(
            default_ttl_seconds=self._fetch_config.default_ttl_seconds
        )
        self._fetcher = ResilientFetcher(
            config=self._fetch_config,
            client=client,
            sleep=sleep,
            secrets=settings.secrets(),
        )
        self._cached_fetcher = CachedFetcher(
            self._store,
            self._fetcher,
            single_flight=self._fetch_config.single_flight,
        )
        self._catalog = catalog or build_dashboard_catalog(settings)
        self._cache_control = cache_control_header(
            settings.cache_max_age_seconds,
            settings.stale_while_revalidate_seconds,
        )
        self._coordinator = AggregationCoordinator(
            self._cached_fetcher,
            sleep=sleep,
            transforms=build_dashboard_transforms(settings) if catalog is None else (),
            cache_control=self._cache_control,
        )
        self._log = logger.bind(component="service")

    @property
    def catalog(self) -> SourceCatalog:
        """Get the configured source catalog."""
        return self._catalog

    @property
    def store(self) -> CacheStore:
        """Get the cache backend."""
        return self._store

    @property
    def cache_control(self) -> str:
        """Cache-Control directive recommended for the HTTP response."""
        return self._cache_control

    def aggregate(self) -> AggregatedResult:
        """Aggregate every configured source.

        Returns:
            AggregatedResult for the catalog.
        """
        return self._coordinator.aggregate(self._catalog)

    def get_dashboard_data(self) -> tuple[dict[str, Any], dict[str, str]]:
        """Build the response body and headers for one dashboard request.

        Returns:
            Tuple of (JSON-serializable body, response headers).
        """
        result = self.aggregate()
        headers = {
            "Cache-Control": self._cache_control,
            "Content-Type": "application/json",
        }
        return result.to_dict(), headers

    def clear_cache(self) -> None:
        """Drop every cached payload."""
        self._store.clear()
        self._log.info("cache_cleared")

    def close(self) -> None:
        """Release network resources."""
        self._fetcher.close()

    def __enter__(self) -> "DashboardService":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
