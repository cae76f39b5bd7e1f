"""Sequential fetch orchestrator for rate-limited providers."""

import time
from collections.abc import Callable, Sequence

import structlog

from dashfeed.fetch.cache import CachedFetcher
from dashfeed.orchestrator.outcome import (
    FetchOutcome,
    Fulfilled,
    outcome_from_exception,
    outcome_from_result,
)
from dashfeed.sources.models import SourceDescriptor


logger = structlog.get_logger()


class SequentialFetcher:
    """Drives descriptors through the cached fetcher one at a time.

    Item i is fully resolved (success, failure, or retry exhaustion) before
    item i+1 starts, and a fixed delay is slept after every item except the
    last. The delay is paid even when the item was served from cache unless
    skip_delay_after_cache_hit is set; skipping it means the spacing no
    longer reflects every catalog entry, only the ones that hit the network.
    """

    def __init__(
        self,
        cached_fetcher: CachedFetcher,
        sleep: Callable[[float], None] = time.sleep,
        skip_delay_after_cache_hit: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            cached_fetcher: Cache-aware fetcher used for every item.
            sleep: Blocking sleep used for inter-item delays.
            skip_delay_after_cache_hit: Skip the delay after a cache hit.
        """
        self._cached_fetcher = cached_fetcher
        self._sleep = sleep
        self._skip_delay_after_cache_hit = skip_delay_after_cache_hit
        self._log = logger.bind(component="sequential")

    def run(
        self,
        descriptors: Sequence[SourceDescriptor],
        inter_delay_seconds: float,
        group_id: str | None = None,
    ) -> list[FetchOutcome]:
        """Fetch descriptors in order with spacing between calls.

        Args:
            descriptors: Sources to fetch, in order.
            inter_delay_seconds: Delay slept between consecutive items.
            group_id: Group identifier for logging.

        Returns:
            One outcome per descriptor, in input order.
        """
        log = self._log.bind(group_id=group_id, item_count=len(descriptors))
        log.info("sequential_started", inter_delay_seconds=inter_delay_seconds)

        outcomes: list[FetchOutcome] = []
        last_index = len(descriptors) - 1

        for index, descriptor in enumerate(descriptors):
            try:
                result = self._cached_fetcher.fetch(descriptor)
                outcome = outcome_from_result(descriptor.name, result)
            except Exception as e:  # noqa: BLE001
                log.error("sequential_item_error", source=descriptor.name, error=str(e))
                outcome = outcome_from_exception(descriptor.name, e)

            outcomes.append(outcome)
            log.debug(
                "sequential_item_done",
                source=descriptor.name,
                index=index,
                ok=outcome.ok,
            )

            if index < last_index and inter_delay_seconds > 0:
                if (
                    self._skip_delay_after_cache_hit
                    and isinstance(outcome, Fulfilled)
                    and outcome.from_cache
                ):
                    continue
                self._sleep(inter_delay_seconds)

        log.info(
            "sequential_complete",
            fulfilled=sum(1 for o in outcomes if o.ok),
            rejected=sum(1 for o in outcomes if not o.ok),
        )
        return outcomes
