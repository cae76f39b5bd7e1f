"""Configuration models for the HTTP fetch layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from dashfeed.fetch.constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
)
from dashfeed.fetch.models import RetryPolicy


class FetchConfig(BaseModel):
    """Configuration for the HTTP fetch layer.

    Central configuration for all outbound calls: default headers, the
    retry policy, response limits, and cache behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        "dashfeed/0.1"
    )
    max_response_size_bytes: Annotated[int, Field(ge=1024, le=200 * 1024 * 1024)] = (
        DEFAULT_MAX_RESPONSE_SIZE_BYTES
    )
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    default_ttl_seconds: Annotated[float, Field(gt=0, le=86400)] = float(
        DEFAULT_CACHE_TTL_SECONDS
    )
    single_flight: bool = Field(
        default=False,
        description="Share one network call between concurrent misses of a key",
    )

    def default_headers(self) -> dict[str, str]:
        """Headers sent with every request unless a descriptor overrides them.

        Returns:
            Dictionary of headers.
        """
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
