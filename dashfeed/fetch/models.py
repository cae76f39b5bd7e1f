"""Data models for the HTTP fetch layer."""

import random
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from dashfeed.fetch.constants import HTTP_STATUS_OK_MAX, HTTP_STATUS_OK_MIN


class FetchErrorClass(str, Enum):
    """Classification of fetch errors for metrics and retry decisions.

    - TIMEOUT: Per-request deadline elapsed
    - RATE_LIMITED: 429 Too Many Requests
    - SERVER_ERROR: 5xx response
    - CLIENT_ERROR: Any other non-2xx response (terminal)
    - NETWORK_ERROR: Connection-level failure
    - DECODE_ERROR: 2xx response whose body is not valid JSON
    - RESPONSE_SIZE_EXCEEDED: Response exceeded max size limit (terminal)
    - EXHAUSTED: Retry budget spent without success (terminal)
    - UNKNOWN: Unclassified error (terminal)
    """

    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    RESPONSE_SIZE_EXCEEDED = "RESPONSE_SIZE_EXCEEDED"
    EXHAUSTED = "EXHAUSTED"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_CLASSES = frozenset(
    {
        FetchErrorClass.TIMEOUT,
        FetchErrorClass.RATE_LIMITED,
        FetchErrorClass.SERVER_ERROR,
        FetchErrorClass.NETWORK_ERROR,
        FetchErrorClass.DECODE_ERROR,
    }
)


class FetchError(BaseModel):
    """Typed error from a fetch operation.

    Provides structured information about what went wrong during a fetch,
    enabling retry decisions and per-source error reporting.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    error_class: FetchErrorClass = Field(description="Classification of the error")
    message: Annotated[str, Field(min_length=1, description="Human-readable message")]
    status_code: int | None = Field(
        default=None, description="HTTP status code if available"
    )
    retry_after: int | None = Field(
        default=None, description="Retry-After seconds sent by the server"
    )
    attempts: int | None = Field(
        default=None, description="Number of attempts made (set on EXHAUSTED)"
    )
    last_error: "FetchError | None" = Field(
        default=None, description="Underlying error that exhausted the budget"
    )

    @property
    def is_retryable(self) -> bool:
        """Check if this error class is recovered locally by retrying."""
        return self.error_class in RETRYABLE_ERROR_CLASSES


class FetchResult(BaseModel):
    """Result of a fetch operation.

    Carries either the decoded payload or the final error. Payloads are
    opaque to the fetch layer.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Annotated[str, Field(min_length=1, description="Requested URL")]
    status_code: int = Field(
        default=0, ge=0, le=599, description="HTTP status code (0 if no response)"
    )
    payload: Any = Field(default=None, description="Decoded JSON body")
    from_cache: bool = Field(
        default=False, description="Whether payload was served from the cache"
    )
    attempts: int = Field(default=0, ge=0, description="Network attempts made")
    error: FetchError | None = Field(
        default=None, description="Error details if fetch failed"
    )

    @property
    def is_success(self) -> bool:
        """Check if the fetch was successful."""
        if self.error is not None:
            return False
        if self.from_cache:
            return True
        return HTTP_STATUS_OK_MIN <= self.status_code < HTTP_STATUS_OK_MAX


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Controls how many times to retry and the backoff strategy.
    Uses capped exponential backoff:
    delay = min(base_delay_ms * (exponential_base ^ attempt), max_delay_ms)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    base_delay_ms: Annotated[int, Field(ge=0, le=60000)] = 1000
    max_delay_ms: Annotated[int, Field(ge=0, le=300000)] = 10000
    exponential_base: Annotated[float, Field(ge=1.0, le=5.0)] = 2.0
    jitter_factor: Annotated[float, Field(ge=0.0, le=1.0)] = 0.0
    max_retry_after_seconds: Annotated[int, Field(ge=0)] | None = None

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retries + 1

    def should_retry(self, error: FetchError, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            error: The error that occurred.
            attempt: Current attempt number (0-indexed).

        Returns:
            True if the request should be retried.
        """
        if attempt >= self.max_retries:
            return False
        return error.is_retryable

    def get_delay_ms(self, attempt: int) -> int:
        """Calculate exponential backoff before the next attempt.

        Args:
            attempt: Attempt number that just failed (0-indexed).

        Returns:
            Delay in milliseconds.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay_ms)

        if self.jitter_factor:
            delay += delay * self.jitter_factor * random.random()  # noqa: S311
        return int(delay)

    def get_delay_seconds(self, error: FetchError, attempt: int) -> float:
        """Pick the wait before retrying after an error.

        Rate-limit and server errors honor a server-supplied Retry-After;
        everything else uses exponential backoff. The hint is
        waited in full unless max_retry_after_seconds opts into a ceiling.

        Args:
            error: The retryable error.
            attempt: Attempt number that just failed (0-indexed).

        Returns:
            Delay in seconds.
        """
        honors_hint = error.error_class in {
            FetchErrorClass.RATE_LIMITED,
            FetchErrorClass.SERVER_ERROR,
        }
        if honors_hint and error.retry_after is not None:
            if self.max_retry_after_seconds is None:
                return float(error.retry_after)
            return float(min(error.retry_after, self.max_retry_after_seconds))
        return self.get_delay_ms(attempt) / 1000.0


class ResponseSizeExceededError(Exception):
    """Raised when response size exceeds the configured limit."""
