"""Per-source outcomes produced by the orchestrators."""

from dataclasses import dataclass
from typing import Any

from dashfeed.fetch.models import FetchError, FetchErrorClass, FetchResult


@dataclass(frozen=True)
class Fulfilled:
    """A source that produced a payload."""

    source: str
    payload: Any
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """A source that failed; the error is data, not an exception."""

    source: str
    error: FetchError

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        """Human-readable error message."""
        return self.error.message


FetchOutcome = Fulfilled | Rejected


def outcome_from_result(source: str, result: FetchResult) -> FetchOutcome:
    """Convert a fetch result into an outcome.

    Args:
        source: Logical source name.
        result: Final fetch result.

    Returns:
        Fulfilled on success, Rejected otherwise.
    """
    if result.is_success:
        return Fulfilled(
            source=source,
            payload=result.payload,
            from_cache=result.from_cache,
        )
    error = result.error or FetchError(
        error_class=FetchErrorClass.UNKNOWN,
        message=f"Fetch failed with status {result.status_code}",
        status_code=result.status_code or None,
    )
    return Rejected(source=source, error=error)


def outcome_from_exception(source: str, exc: BaseException) -> Rejected:
    """Convert an unexpected exception into a rejection.

    Args:
        source: Logical source name.
        exc: Exception raised while fetching.

    Returns:
        Rejected outcome with an UNKNOWN error.
    """
    return Rejected(
        source=source,
        error=FetchError(
            error_class=FetchErrorClass.UNKNOWN,
            message=f"Execution error: {type(exc).__name__}: {exc}",
        ),
    )
