"""Aggregation coordinator with concurrent groups and failure isolation."""

import contextvars
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import UTC, datetime

import structlog

from dashfeed.fetch.cache import CachedFetcher
from dashfeed.fetch.models import FetchError, FetchErrorClass
from dashfeed.orchestrator.metrics import AggregationMetrics
from dashfeed.orchestrator.models import (
    AggregatedResult,
    AggregationMeta,
    SourceErrorRecord,
)
from dashfeed.orchestrator.outcome import (
    FetchOutcome,
    Fulfilled,
    Rejected,
    outcome_from_exception,
    outcome_from_result,
)
from dashfeed.orchestrator.sequential import SequentialFetcher
from dashfeed.orchestrator.transforms import PostMergeTransform
from dashfeed.sources.models import SourceCatalog, SourceDescriptor


logger = structlog.get_logger()

def cache_control_header(
    max_age_seconds: int,
    stale_while_revalidate_seconds: int,
) -> str:
    """Build the Cache-Control directive recommended to callers.

    Args:
        max_age_seconds: Shared-cache lifetime of the response.
        stale_while_revalidate_seconds: Window for serving stale while refreshing.

    Returns:
        Cache-Control header value.
    """
    return (
        f"s-maxage={max_age_seconds}, "
        f"stale-while-revalidate={stale_while_revalidate_seconds}"
    )


class AggregationCoordinator:
    """Fetches a catalog of sources into one partial-failure-tolerant result.

    Provides:
    - Concurrent fan-out for the parallel partition
    - One sequential run per rate-limited group, groups running concurrently
    - Failure isolation (one source failing never stops the others)
    - Per-source error reporting and cache diagnostics

    The coordinator never raises for source failures; an all-None result with
    a full error list is a valid response.
    """

    def __init__(  # noqa: PLR0913
        self,
        cached_fetcher: CachedFetcher,
        sleep: Callable[[float], None] = time.sleep,
        transforms: Sequence[PostMergeTransform] = (),
        skip_delay_after_cache_hit: bool = False,
        cache_control: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            cached_fetcher: Cache-aware fetcher shared by every path.
            sleep: Blocking sleep used by sequential groups.
            transforms: Post-merge adapters applied in order.
            skip_delay_after_cache_hit: Passed to the sequential orchestrator.
            cache_control: Directive reported in metadata for the caller.
            clock: Timestamp source for metadata.
        """
        self._cached_fetcher = cached_fetcher
        self._sequential = SequentialFetcher(
            cached_fetcher,
            sleep=sleep,
            skip_delay_after_cache_hit=skip_delay_after_cache_hit,
        )
        self._transforms = list(transforms)
        self._cache_control = cache_control
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = AggregationMetrics.get_instance()
        self._log = logger.bind(component="aggregator")

    def aggregate(
        self, catalog: SourceCatalog | Sequence[SourceDescriptor]
    ) -> AggregatedResult:
        """Fetch every source of the catalog and merge the outcomes.

        Args:
            catalog: Sources to query.

        Returns:
            AggregatedResult with one field per source, errors, and metadata.
        """
        if not isinstance(catalog, SourceCatalog):
            catalog = SourceCatalog(sources=list(catalog))

        start_time_ns = time.perf_counter_ns()
        generated_at = self._clock()

        parallel = catalog.parallel_sources()
        groups = catalog.sequential_groups()

        self._log.info(
            "aggregation_started",
            source_count=len(catalog.sources),
            parallel_count=len(parallel),
            group_count=len(groups),
        )

        outcomes = self._run_partitions(parallel, groups)

        fields: dict[str, object] = {}
        errors: list[SourceErrorRecord] = []
        for source in catalog.sources:
            outcome = outcomes.get(source.name) or Rejected(
                source=source.name,
                error=FetchError(
                    error_class=FetchErrorClass.UNKNOWN,
                    message="No outcome recorded",
                ),
            )
            if isinstance(outcome, Fulfilled):
                fields[source.name] = outcome.payload
                continue

            fields[source.name] = None
            errors.append(
                SourceErrorRecord(
                    source=source.name,
                    error=outcome.error.message,
                    error_class=outcome.error.error_class,
                    status_code=outcome.error.status_code,
                )
            )
            self._metrics.record_failure(source.name, outcome.error.error_class)

        for transform in self._transforms:
            fields = transform.apply(fields)

        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
        fulfilled = len(catalog.sources) - len(errors)
        self._metrics.record_run(fulfilled, len(errors), duration_ms)

        self._log.info(
            "aggregation_complete",
            duration_ms=round(duration_ms, 2),
            sources_fulfilled=fulfilled,
            sources_failed=len(errors),
            failed_sources=[e.source for e in errors],
        )

        return AggregatedResult(
            fields=fields,
            errors=errors,
            meta=AggregationMeta(
                generated_at=generated_at,
                cache_stats=self._cached_fetcher.store.stats().to_dict(),
                source_count=len(catalog.sources),
                duration_ms=duration_ms,
                cache_control=self._cache_control,
            ),
        )

    def _run_partitions(
        self,
        parallel: list[SourceDescriptor],
        groups: dict[str, tuple[float, list[SourceDescriptor]]],
    ) -> dict[str, FetchOutcome]:
        """Run the parallel partition and every sequential group concurrently.

        Every source and every group gets its own worker, so all tasks start
        together and are joined before this returns. Each task runs in a copy
        of the caller's context so bound request ids reach worker threads.

        Args:
            parallel: Sources fetched concurrently.
            groups: Sequential groups keyed by group id.

        Returns:
            Outcomes keyed by source name.
        """
        outcomes: dict[str, FetchOutcome] = {}
        task_count = len(parallel) + len(groups)
        if task_count == 0:
            return outcomes

        with ThreadPoolExecutor(
            max_workers=task_count, thread_name_prefix="dashfeed"
        ) as executor:
            future_to_sources: dict[
                Future[list[FetchOutcome]], list[SourceDescriptor]
            ] = {}

            # Groups first: they are the long-running tasks
            for group_id, (inter_delay, members) in groups.items():
                future = executor.submit(
                    contextvars.copy_context().run,
                    self._sequential.run,
                    members,
                    inter_delay,
                    group_id,
                )
                future_to_sources[future] = members

            for source in parallel:
                future = executor.submit(
                    contextvars.copy_context().run, self._fetch_one, source
                )
                future_to_sources[future] = [source]

            for future in as_completed(future_to_sources):
                members = future_to_sources[future]
                try:
                    for outcome in future.result():
                        outcomes[outcome.source] = outcome
                except Exception as e:  # noqa: BLE001
                    self._log.error(
                        "source_execution_error",
                        sources=[m.name for m in members],
                        error=str(e),
                    )
                    for member in members:
                        outcomes.setdefault(
                            member.name, outcome_from_exception(member.name, e)
                        )

        return outcomes

    def _fetch_one(self, source: SourceDescriptor) -> list[FetchOutcome]:
        result = self._cached_fetcher.fetch(source)
        return [outcome_from_result(source.name, result)]
