"""Source descriptors consumed by the orchestration layer."""

from dashfeed.sources.models import (
    PARALLEL,
    ConcurrencyClass,
    HttpMethod,
    Parallel,
    RequestOptions,
    SequentialGroup,
    SourceCatalog,
    SourceDescriptor,
)


__all__ = [
    "PARALLEL",
    "ConcurrencyClass",
    "HttpMethod",
    "Parallel",
    "RequestOptions",
    "SequentialGroup",
    "SourceCatalog",
    "SourceDescriptor",
]
