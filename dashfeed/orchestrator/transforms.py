"""Post-merge adapters applied to aggregated fields."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol


class PostMergeTransform(Protocol):
    """A pure, non-failing reshaping of merged fields."""

    def apply(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Return new fields derived from the merged ones.

        Args:
            fields: Merged source fields (not mutated).

        Returns:
            New fields mapping.
        """
        ...


@dataclass(frozen=True)
class ConcatMerge:
    """Concatenate list payloads of several sources into one field.

    Used for paginated listings fetched as separate sources. Inputs that are
    missing, None, or not lists are skipped; the target is None only when no
    input contributed a list.

    Attributes:
        target: Field receiving the concatenated list.
        sources: Source fields to concatenate, in order.
        drop_sources: Remove the source fields after merging.
    """

    target: str
    sources: Sequence[str]
    drop_sources: bool = False

    def apply(self, fields: dict[str, Any]) -> dict[str, Any]:
        merged: list[Any] = []
        contributed = False
        for name in self.sources:
            value = fields.get(name)
            if isinstance(value, list):
                merged.extend(value)
                contributed = True

        result = dict(fields)
        if self.drop_sources:
            for name in self.sources:
                result.pop(name, None)
        result[self.target] = merged if contributed else None
        return result
