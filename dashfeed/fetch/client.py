"""HTTP client with timeouts, response classification, and retries."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from io import BytesIO
from types import TracebackType
from typing import TYPE_CHECKING

import httpx
import structlog

from dashfeed.fetch.config import FetchConfig
from dashfeed.fetch.constants import (
    DEFAULT_CHUNK_SIZE,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    HTTP_STATUS_SERVER_ERROR_MAX,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_TOO_MANY_REQUESTS,
)
from dashfeed.fetch.metrics import FetchMetrics
from dashfeed.fetch.models import (
    FetchError,
    FetchErrorClass,
    FetchResult,
    ResponseSizeExceededError,
)
from dashfeed.fetch.redact import redact_headers, redact_url


if TYPE_CHECKING:
    from dashfeed.sources.models import SourceDescriptor


logger = structlog.get_logger()


class ResilientFetcher:
    """HTTP client that performs one logical fetch with retries.

    Provides:
    - Per-request timeouts that cancel only the request they bound
    - Classification of 429/5xx/timeouts/network errors as retryable
    - Capped exponential backoff honoring Retry-After hints
    - Maximum response size enforcement
    - Header and URL redaction for logging
    - Metrics collection

    Callers only ever see the final success or the final failure.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        secrets: tuple[str, ...] = (),
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Fetch configuration (defaults used if omitted).
            client: Shared httpx client; one is created and owned if omitted.
            sleep: Blocking sleep used between attempts.
            secrets: Secret values masked in logged URLs.
        """
        self._config = config or FetchConfig()
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._sleep = sleep
        self._secrets = secrets
        self._metrics = FetchMetrics.get_instance()
        self._log = logger.bind(component="fetch")

    @property
    def config(self) -> FetchConfig:
        """Get the fetch configuration."""
        return self._config

    def close(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ResilientFetcher:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def fetch(self, descriptor: SourceDescriptor) -> FetchResult:
        """Fetch a source with retry support.

        Args:
            descriptor: Source to fetch.

        Returns:
            FetchResult with the decoded payload or the final error.
        """
        start_time_ns = time.perf_counter_ns()

        log = self._log.bind(
            source=descriptor.name,
            url=redact_url(descriptor.url, self._secrets),
            method=descriptor.request.method.value,
        )

        headers = self._build_headers(descriptor)
        result = self._execute_with_retry(descriptor, headers, log)

        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
        self._metrics.record_duration(duration_ms)

        log.info(
            "fetch_complete",
            status_code=result.status_code,
            attempts=result.attempts,
            duration_ms=round(duration_ms, 2),
            error_class=result.error.error_class.value if result.error else None,
        )

        return result

    def _build_headers(self, descriptor: SourceDescriptor) -> dict[str, str]:
        """Build request headers.

        Args:
            descriptor: Source being fetched.

        Returns:
            Complete headers dictionary.
        """
        headers = self._config.default_headers()
        headers.update(descriptor.request.headers)
        return headers

    def _execute_with_retry(
        self,
        descriptor: SourceDescriptor,
        headers: dict[str, str],
        log: structlog.stdlib.BoundLogger,
    ) -> FetchResult:
        """Execute request with retry logic.

        Args:
            descriptor: Source being fetched.
            headers: Request headers.
            log: Bound logger.

        Returns:
            FetchResult from the request.
        """
        policy = self._config.retry_policy
        last_error: FetchError | None = None
        last_status = 0

        for attempt in range(policy.max_attempts):
            result = self._execute_single(descriptor, headers, log, attempt)

            if result.error is None:
                return result.model_copy(update={"attempts": attempt + 1})

            last_error = result.error
            last_status = result.status_code

            if not last_error.is_retryable:
                self._metrics.record_failure(last_error.error_class)
                return result.model_copy(update={"attempts": attempt + 1})

            if not policy.should_retry(last_error, attempt):
                break

            delay_seconds = policy.get_delay_seconds(last_error, attempt)
            self._metrics.record_retry()
            log.info(
                "retry_scheduled",
                attempt=attempt,
                error_class=last_error.error_class.value,
                status_code=last_error.status_code,
                retry_after=last_error.retry_after,
                delay_seconds=delay_seconds,
                max_retries=policy.max_retries,
            )
            self._sleep(delay_seconds)

        # All retries exhausted
        self._metrics.record_failure(FetchErrorClass.EXHAUSTED)
        underlying = last_error.message if last_error else "no response"
        return FetchResult(
            url=descriptor.url,
            status_code=last_status,
            attempts=policy.max_attempts,
            error=FetchError(
                error_class=FetchErrorClass.EXHAUSTED,
                message=(
                    f"Failed after {policy.max_attempts} attempts: {underlying}"
                ),
                status_code=last_error.status_code if last_error else None,
                attempts=policy.max_attempts,
                last_error=last_error,
            ),
        )

    def _execute_single(
        self,
        descriptor: SourceDescriptor,
        headers: dict[str, str],
        log: structlog.stdlib.BoundLogger,
        attempt: int,
    ) -> FetchResult:
        """Execute a single HTTP request.

        Args:
            descriptor: Source being fetched.
            headers: Request headers.
            log: Bound logger.
            attempt: Current attempt number.

        Returns:
            FetchResult from the request.
        """
        url = descriptor.url
        safe_url = redact_url(url, self._secrets)
        log.debug("request_started", attempt=attempt, headers=redact_headers(headers))

        try:
            with self._client.stream(
                descriptor.request.method.value,
                url,
                headers=headers,
                json=descriptor.request.json_body,
                timeout=descriptor.timeout_seconds,
            ) as response:
                content_length = response.headers.get("content-length")
                if content_length and content_length.isdigit():
                    size = int(content_length)
                    if size > self._config.max_response_size_bytes:
                        return self._error_result(
                            url,
                            FetchErrorClass.RESPONSE_SIZE_EXCEEDED,
                            f"Response size {size} exceeds limit "
                            f"{self._config.max_response_size_bytes}",
                            status_code=response.status_code,
                        )

                body = self._read_body_with_limit(response)
                status_code = response.status_code
                response_headers = response.headers

        except httpx.TimeoutException as e:
            return self._error_result(
                url,
                FetchErrorClass.TIMEOUT,
                f"Request timed out after {descriptor.timeout_seconds}s: "
                f"{safe_url} ({type(e).__name__})",
            )

        except httpx.TransportError as e:
            return self._error_result(
                url,
                FetchErrorClass.NETWORK_ERROR,
                f"Network error: {safe_url} ({type(e).__name__})",
            )

        except ResponseSizeExceededError as e:
            return self._error_result(
                url, FetchErrorClass.RESPONSE_SIZE_EXCEEDED, str(e)
            )

        except Exception as e:  # noqa: BLE001
            return self._error_result(
                url,
                FetchErrorClass.UNKNOWN,
                f"Unexpected error: {type(e).__name__}: {e}",
            )

        self._metrics.record_request(status_code, len(body))

        http_error = classify_http_status(status_code, response_headers, safe_url)
        if http_error is not None:
            return FetchResult(url=url, status_code=status_code, error=http_error)

        if not body.strip():
            return FetchResult(url=url, status_code=status_code, payload=None)

        try:
            payload = json.loads(body)
        except ValueError as e:
            return self._error_result(
                url,
                FetchErrorClass.DECODE_ERROR,
                f"Invalid JSON from {safe_url}: {e}",
                status_code=status_code,
            )

        return FetchResult(url=url, status_code=status_code, payload=payload)

    def _read_body_with_limit(self, response: httpx.Response) -> bytes:
        """Read response body with size limit.

        Args:
            response: Streaming HTTP response.

        Returns:
            Response body bytes.

        Raises:
            ResponseSizeExceededError: If the size limit is exceeded.
        """
        buffer = BytesIO()
        total_read = 0
        max_size = self._config.max_response_size_bytes

        for chunk in response.iter_bytes(chunk_size=DEFAULT_CHUNK_SIZE):
            total_read += len(chunk)
            if total_read > max_size:
                msg = (
                    f"Response size exceeded limit of {max_size} bytes "
                    f"(read {total_read} bytes)"
                )
                raise ResponseSizeExceededError(msg)
            buffer.write(chunk)

        return buffer.getvalue()

    @staticmethod
    def _error_result(
        url: str,
        error_class: FetchErrorClass,
        message: str,
        status_code: int | None = None,
    ) -> FetchResult:
        return FetchResult(
            url=url,
            status_code=status_code or 0,
            error=FetchError(
                error_class=error_class,
                message=message,
                status_code=status_code,
            ),
        )


def classify_http_status(
    status_code: int,
    headers: httpx.Headers,
    safe_url: str,
) -> FetchError | None:
    """Classify an HTTP status code as error.

    Args:
        status_code: HTTP status code.
        headers: Response headers.
        safe_url: Redacted URL for the error message.

    Returns:
        FetchError if status indicates error, None otherwise.
    """
    if HTTP_STATUS_OK_MIN <= status_code < HTTP_STATUS_OK_MAX:
        return None

    if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
        return FetchError(
            error_class=FetchErrorClass.RATE_LIMITED,
            message=f"HTTP 429: {safe_url}",
            status_code=status_code,
            retry_after=parse_retry_after(headers.get("retry-after")),
        )

    if HTTP_STATUS_SERVER_ERROR_MIN <= status_code < HTTP_STATUS_SERVER_ERROR_MAX:
        return FetchError(
            error_class=FetchErrorClass.SERVER_ERROR,
            message=f"HTTP {status_code}: {safe_url}",
            status_code=status_code,
            retry_after=parse_retry_after(headers.get("retry-after")),
        )

    return FetchError(
        error_class=FetchErrorClass.CLIENT_ERROR,
        message=f"HTTP {status_code}: {safe_url}",
        status_code=status_code,
    )


def parse_retry_after(value: str | None) -> int | None:
    """Parse Retry-After header value.

    Args:
        value: Header value (seconds or HTTP date).

    Returns:
        Seconds to wait, or None if not parseable.
    """
    if not value:
        return None

    value = value.strip()
    if value.isascii() and value.isdecimal():
        return int(value)

    try:
        dt = parsedate_to_datetime(value)
    except (ValueError, TypeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    delta = dt - datetime.now(UTC)
    return max(0, int(delta.total_seconds()))
