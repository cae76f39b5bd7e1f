"""Sequential and concurrent orchestration of cached fetches."""

from dashfeed.orchestrator.aggregator import (
    AggregationCoordinator,
    cache_control_header,
)
from dashfeed.orchestrator.metrics import AggregationMetrics
from dashfeed.orchestrator.models import (
    AggregatedResult,
    AggregationMeta,
    SourceErrorRecord,
)
from dashfeed.orchestrator.outcome import FetchOutcome, Fulfilled, Rejected
from dashfeed.orchestrator.sequential import SequentialFetcher
from dashfeed.orchestrator.transforms import ConcatMerge, PostMergeTransform


__all__ = [
    "AggregatedResult",
    "AggregationCoordinator",
    "AggregationMeta",
    "AggregationMetrics",
    "ConcatMerge",
    "FetchOutcome",
    "Fulfilled",
    "PostMergeTransform",
    "Rejected",
    "SequentialFetcher",
    "SourceErrorRecord",
    "cache_control_header",
]
