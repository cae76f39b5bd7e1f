"""Result models for dashboard aggregation."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from dashfeed.fetch.models import FetchErrorClass


ERRORS_KEY = "_errors"
META_KEY = "_meta"


class SourceErrorRecord(BaseModel):
    """Serializable per-source error entry for the aggregated response."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Annotated[str, Field(min_length=1, description="Source name")]
    error: Annotated[str, Field(min_length=1, description="Error message")]
    error_class: FetchErrorClass = Field(description="Error classification")
    status_code: int | None = Field(default=None, description="Last HTTP status")

    def to_dict(self) -> dict[str, str]:
        """Convert to the public {source, error} shape.

        Returns:
            Dictionary with source and error keys.
        """
        return {"source": self.source, "error": self.error}


@dataclass(frozen=True)
class AggregationMeta:
    """Diagnostics attached to every aggregated response."""

    generated_at: datetime
    cache_stats: dict[str, int]
    source_count: int
    duration_ms: float = 0.0
    cache_control: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the public camelCase shape.

        Returns:
            Dictionary of metadata.
        """
        data: dict[str, Any] = {
            "generatedAt": self.generated_at.isoformat(),
            "cacheStats": dict(self.cache_stats),
            "sourceCount": self.source_count,
            "durationMs": round(self.duration_ms, 2),
        }
        if self.cache_control:
            data["cacheControl"] = self.cache_control
        return data


@dataclass
class AggregatedResult:
    """Merged outcome of one aggregation.

    fields holds one entry per configured source (None when the source
    failed), so callers never need to tell "not attempted" from "failed".
    """

    fields: dict[str, Any]
    errors: list[SourceErrorRecord] = field(default_factory=list)
    meta: AggregationMeta | None = None

    @property
    def has_errors(self) -> bool:
        """Check if any source failed."""
        return bool(self.errors)

    @property
    def available_sources(self) -> list[str]:
        """Names of sources with a payload."""
        return [name for name, value in self.fields.items() if value is not None]

    def error_for(self, source: str) -> SourceErrorRecord | None:
        """Find the error recorded for a source.

        Args:
            source: Source name.

        Returns:
            The error record, or None if the source did not fail.
        """
        for record in self.errors:
            if record.source == source:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON-serializable response shape.

        Returns:
            Source fields followed by _errors (only when non-empty) and _meta.
        """
        data: dict[str, Any] = dict(self.fields)
        if self.errors:
            data[ERRORS_KEY] = [record.to_dict() for record in self.errors]
        if self.meta is not None:
            data[META_KEY] = self.meta.to_dict()
        return data

    def to_json(self, indent: int | None = None) -> str:
        """Serialize the response to JSON.

        Args:
            indent: Optional indentation for pretty output.

        Returns:
            JSON string.
        """
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)
