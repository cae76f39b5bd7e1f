"""Typed source descriptors and catalog."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dashfeed.fetch.constants import DEFAULT_CACHE_TTL_SECONDS, DEFAULT_TIMEOUT_SECONDS


class HttpMethod(str, Enum):
    """Supported request methods."""

    GET = "GET"
    POST = "POST"


class RequestOptions(BaseModel):
    """Method, headers and optional JSON body for a source request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    json_body: dict[str, Any] | list[Any] | None = None


class Parallel(BaseModel):
    """Source fetched concurrently with every other parallel source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["parallel"] = "parallel"


class SequentialGroup(BaseModel):
    """Source fetched one at a time with others sharing the same provider quota."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["sequential"] = "sequential"
    group_id: Annotated[str, Field(min_length=1)]
    inter_delay_seconds: Annotated[float, Field(ge=0.0, le=600.0)] = 1.0


ConcurrencyClass = Annotated[Parallel | SequentialGroup, Field(discriminator="kind")]

PARALLEL = Parallel()


class SourceDescriptor(BaseModel):
    """Everything needed to fetch one logical dashboard source.

    Used only at orchestration time; never persisted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Annotated[str, Field(min_length=1, description="Logical source name")]
    url: Annotated[str, Field(min_length=1)]
    request: RequestOptions = Field(default_factory=RequestOptions)
    ttl_seconds: Annotated[float, Field(gt=0.0, le=86400.0)] = float(
        DEFAULT_CACHE_TTL_SECONDS
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = DEFAULT_TIMEOUT_SECONDS
    concurrency: ConcurrencyClass = PARALLEL

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reserve underscore-prefixed names for result metadata."""
        if v.startswith("_"):
            msg = f"Source name '{v}' must not start with an underscore"
            raise ValueError(msg)
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure the URL uses http(s)."""
        if not v.startswith(("http://", "https://")):
            msg = f"Source URL must use http or https: {v}"
            raise ValueError(msg)
        return v

    @property
    def is_parallel(self) -> bool:
        """Check if this source belongs to the parallel partition."""
        return isinstance(self.concurrency, Parallel)


class SourceCatalog(BaseModel):
    """Validated, ordered set of sources queried by one aggregation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sources: list[SourceDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_consistency(self) -> "SourceCatalog":
        """Require unique names and one inter-delay per sequential group."""
        seen: set[str] = set()
        delays: dict[str, float] = {}
        for source in self.sources:
            if source.name in seen:
                msg = f"Duplicate source name: {source.name}"
                raise ValueError(msg)
            seen.add(source.name)

            group = source.concurrency
            if isinstance(group, SequentialGroup):
                expected = delays.setdefault(group.group_id, group.inter_delay_seconds)
                if expected != group.inter_delay_seconds:
                    msg = (
                        f"Sequential group '{group.group_id}' has conflicting "
                        f"inter-delays: {expected} and {group.inter_delay_seconds}"
                    )
                    raise ValueError(msg)
        return self

    @property
    def names(self) -> list[str]:
        """Source names in catalog order."""
        return [s.name for s in self.sources]

    def parallel_sources(self) -> list[SourceDescriptor]:
        """Get sources of the parallel partition.

        Returns:
            Parallel sources in catalog order.
        """
        return [s for s in self.sources if s.is_parallel]

    def sequential_groups(self) -> dict[str, tuple[float, list[SourceDescriptor]]]:
        """Partition sequential sources by group.

        Returns:
            Mapping of group id to (inter-delay seconds, sources in catalog order).
        """
        groups: dict[str, tuple[float, list[SourceDescriptor]]] = {}
        for source in self.sources:
            group = source.concurrency
            if isinstance(group, SequentialGroup):
                _, members = groups.setdefault(
                    group.group_id, (group.inter_delay_seconds, [])
                )
                members.append(source)
        return groups
