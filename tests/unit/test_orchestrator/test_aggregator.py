"""Unit tests for the aggregation coordinator."""

import json
import threading
from collections.abc import Generator

import httpx
import pytest
import structlog

from dashfeed.fetch.cache import CachedFetcher, InMemoryCacheStore
from dashfeed.fetch.client import ResilientFetcher
from dashfeed.fetch.config import FetchConfig
from dashfeed.fetch.metrics import FetchMetrics
from dashfeed.fetch.models import FetchErrorClass, FetchResult, RetryPolicy
from dashfeed.observability.logging import (
    bind_request_context,
    clear_request_context,
)
from dashfeed.orchestrator.aggregator import (
    AggregationCoordinator,
    cache_control_header,
)
from dashfeed.orchestrator.metrics import AggregationMetrics
from dashfeed.orchestrator.models import ERRORS_KEY, META_KEY
from dashfeed.orchestrator.transforms import ConcatMerge
from dashfeed.sources.models import SequentialGroup, SourceCatalog, SourceDescriptor
from tests.helpers.time import FIXED_NOW, FakeClock, SleepRecorder
from tests.helpers.transport import ScriptedTransport, json_response


BASE_URL = "https://api.example.test"
GROUP = SequentialGroup(group_id="paged", inter_delay_seconds=0.5)


@pytest.fixture(autouse=True)
def reset_metrics() -> Generator[None]:
    """Reset metrics singletons around each test."""
    FetchMetrics.reset()
    AggregationMetrics.reset()
    yield
    FetchMetrics.reset()
    AggregationMetrics.reset()


def parallel(name: str) -> SourceDescriptor:
    """Build a parallel descriptor served at /<name>."""
    return SourceDescriptor(name=name, url=f"{BASE_URL}/{name}")


def grouped(name: str) -> SourceDescriptor:
    """Build a grouped descriptor served at /<name>."""
    return SourceDescriptor(name=name, url=f"{BASE_URL}/{name}", concurrency=GROUP)


class Harness:
    """Coordinator wired to a scripted transport, fake clock, and fake sleep."""

    def __init__(
        self,
        routes: dict[str, list[httpx.Response]],
        transforms: list[ConcatMerge] | None = None,
        cache_control: str | None = None,
    ) -> None:
        self.transport = ScriptedTransport(routes)  # type: ignore[arg-type]
        self.clock = FakeClock()
        self.sleep = SleepRecorder()
        self.retry_sleep = SleepRecorder()
        self.store = InMemoryCacheStore(clock=self.clock)
        fetcher = ResilientFetcher(
            config=FetchConfig(retry_policy=RetryPolicy(max_retries=1)),
            client=httpx.Client(transport=self.transport),
            sleep=self.retry_sleep,
        )
        self.coordinator = AggregationCoordinator(
            CachedFetcher(self.store, fetcher),
            sleep=self.sleep,
            transforms=transforms or (),
            cache_control=cache_control,
            clock=lambda: FIXED_NOW,
        )


class RaisingCachedFetcher:
    """Cached-fetcher stand-in that raises for selected sources."""

    def __init__(self, failing: set[str]) -> None:
        self.failing = failing
        self.store = InMemoryCacheStore()

    def fetch(self, descriptor: SourceDescriptor) -> FetchResult:
        if descriptor.name in self.failing:
            msg = "unexpected"
            raise RuntimeError(msg)
        return FetchResult(
            url=descriptor.url, status_code=200, payload=[descriptor.name]
        )


class BarrierCachedFetcher:
    """Cached-fetcher stand-in that blocks until every task has started."""

    def __init__(self, parties: int, waiting: set[str]) -> None:
        self.barrier = threading.Barrier(parties, timeout=5)
        self.waiting = waiting
        self.store = InMemoryCacheStore()

    def fetch(self, descriptor: SourceDescriptor) -> FetchResult:
        if descriptor.name in self.waiting:
            self.barrier.wait()
        return FetchResult(
            url=descriptor.url, status_code=200, payload=[descriptor.name]
        )


class ContextRecordingCachedFetcher:
    """Cached-fetcher stand-in that records the bound request id per source."""

    def __init__(self) -> None:
        self.seen: dict[str, object] = {}
        self.store = InMemoryCacheStore()
        self._lock = threading.Lock()

    def fetch(self, descriptor: SourceDescriptor) -> FetchResult:
        request_id = structlog.contextvars.get_contextvars().get("request_id")
        with self._lock:
            self.seen[descriptor.name] = request_id
        return FetchResult(
            url=descriptor.url, status_code=200, payload=[descriptor.name]
        )


class TestPartialFailure:
    """Tests for failure isolation."""

    def test_one_failure_does_not_affect_others(self) -> None:
        """Test that a failing source is None and listed in errors."""
        harness = Harness(
            {
                "/tvl": [json_response({"tvl": 1})],
                "/fees": [httpx.Response(404)],
                "/page1": [json_response([1])],
                "/page2": [json_response([2])],
            }
        )
        catalog = SourceCatalog(
            sources=[
                parallel("tvl"),
                parallel("fees"),
                grouped("page1"),
                grouped("page2"),
            ]
        )

        result = harness.coordinator.aggregate(catalog)

        assert result.fields == {
            "tvl": {"tvl": 1},
            "fees": None,
            "page1": [1],
            "page2": [2],
        }
        assert [e.source for e in result.errors] == ["fees"]
        error = result.error_for("fees")
        assert error is not None
        assert error.error_class == FetchErrorClass.CLIENT_ERROR
        assert error.error == f"HTTP 404: {BASE_URL}/fees"
        assert result.available_sources == ["tvl", "page1", "page2"]

    def test_all_sources_failing_is_still_a_result(self) -> None:
        """Test that total failure returns all-None fields, not an exception."""
        harness = Harness({})
        catalog = SourceCatalog(sources=[parallel("a"), grouped("b"), grouped("c")])

        result = harness.coordinator.aggregate(catalog)

        assert result.fields == {"a": None, "b": None, "c": None}
        assert [e.source for e in result.errors] == ["a", "b", "c"]

    def test_errors_follow_catalog_order(self) -> None:
        """Test that error entries are ordered as the catalog is."""
        harness = Harness({"/ok": [json_response(1)]})
        names = ["z", "ok", "m", "a"]
        catalog = SourceCatalog(sources=[parallel(n) for n in names])

        result = harness.coordinator.aggregate(catalog)

        assert [e.source for e in result.errors] == ["z", "m", "a"]
        assert list(result.fields) == names

    def test_exhausted_source_reports_attempts(self) -> None:
        """Test that retry exhaustion surfaces as one error for that source."""
        harness = Harness({"/flaky": [httpx.Response(503)], "/ok": [json_response(1)]})
        catalog = SourceCatalog(sources=[parallel("flaky"), parallel("ok")])

        result = harness.coordinator.aggregate(catalog)

        error = result.error_for("flaky")
        assert error is not None
        assert error.error_class == FetchErrorClass.EXHAUSTED
        assert error.error.startswith("Failed after 2 attempts")
        assert harness.retry_sleep.calls == [1.0]
        assert result.fields["ok"] == 1

    def test_unexpected_exception_is_isolated(self) -> None:
        """Test that a raising source becomes an UNKNOWN error."""
        coordinator = AggregationCoordinator(
            RaisingCachedFetcher({"bad", "g2"}),  # type: ignore[arg-type]
            sleep=SleepRecorder(),
            clock=lambda: FIXED_NOW,
        )
        catalog = [parallel("good"), parallel("bad"), grouped("g1"), grouped("g2")]

        result = coordinator.aggregate(catalog)

        assert result.fields["good"] == ["good"]
        assert result.fields["g1"] == ["g1"]
        assert result.fields["bad"] is None
        assert result.fields["g2"] is None
        bad = result.error_for("bad")
        assert bad is not None
        assert bad.error_class == FetchErrorClass.UNKNOWN
        assert "RuntimeError" in bad.error

    def test_failures_recorded_in_metrics(self) -> None:
        """Test per-source failure counters."""
        harness = Harness({"/ok": [json_response(1)]})
        catalog = SourceCatalog(sources=[parallel("ok"), parallel("missing")])

        harness.coordinator.aggregate(catalog)

        metrics = AggregationMetrics.get_instance()
        assert metrics.runs_total == 1
        assert metrics.get_failures_total("missing") == 1
        assert metrics.get_failures_total("ok") == 0


class TestCacheReuse:
    """Tests for warm aggregations."""

    def test_warm_aggregation_makes_no_network_calls(self) -> None:
        """Test idempotent reads within the TTL."""
        harness = Harness(
            {
                "/a": [json_response({"a": 1})],
                "/b": [json_response({"b": 2})],
                "/p1": [json_response([1])],
            }
        )
        catalog = SourceCatalog(sources=[parallel("a"), parallel("b"), grouped("p1")])

        first = harness.coordinator.aggregate(catalog)
        calls_after_first = harness.transport.call_count
        harness.clock.advance(60)
        second = harness.coordinator.aggregate(catalog)

        assert calls_after_first == 3
        assert harness.transport.call_count == calls_after_first
        assert first.fields == second.fields
        assert not second.has_errors

    def test_failed_source_retried_on_next_aggregation(self) -> None:
        """Test that failures are not served from cache on later requests."""
        harness = Harness(
            {"/a": [httpx.Response(404), json_response({"a": 1})]}
        )
        catalog = SourceCatalog(sources=[parallel("a")])

        first = harness.coordinator.aggregate(catalog)
        second = harness.coordinator.aggregate(catalog)

        assert first.fields["a"] is None
        assert second.fields["a"] == {"a": 1}
        assert harness.transport.calls_to("/a") == 2

    def test_expired_entries_are_refetched(self) -> None:
        """Test that advancing past the TTL triggers new calls."""
        harness = Harness({"/a": [json_response(1), json_response(2)]})
        catalog = SourceCatalog(sources=[parallel("a")])

        harness.coordinator.aggregate(catalog)
        harness.clock.advance(901)
        result = harness.coordinator.aggregate(catalog)

        assert result.fields["a"] == 2
        assert harness.transport.call_count == 2


class TestSequentialGroups:
    """Tests for sequential groups inside an aggregation."""

    def test_group_members_are_spaced(self) -> None:
        """Test that group delays are paid between members only."""
        harness = Harness(
            {
                "/p1": [json_response([1])],
                "/p2": [json_response([2])],
                "/p3": [json_response([3])],
                "/x": [json_response("x")],
            }
        )
        catalog = SourceCatalog(
            sources=[grouped("p1"), parallel("x"), grouped("p2"), grouped("p3")]
        )

        result = harness.coordinator.aggregate(catalog)

        assert harness.sleep.calls == [0.5, 0.5]
        paths = [r.url.path for r in harness.transport.requests if r.url.path != "/x"]
        assert paths == ["/p1", "/p2", "/p3"]
        assert list(result.fields) == ["p1", "x", "p2", "p3"]

    def test_separate_groups_each_pay_their_own_delay(self) -> None:
        """Test two groups with different delays."""
        other = SequentialGroup(group_id="other", inter_delay_seconds=2.0)
        harness = Harness({})
        catalog = SourceCatalog(
            sources=[
                grouped("p1"),
                grouped("p2"),
                SourceDescriptor(name="o1", url=f"{BASE_URL}/o1", concurrency=other),
                SourceDescriptor(name="o2", url=f"{BASE_URL}/o2", concurrency=other),
            ]
        )

        harness.coordinator.aggregate(catalog)

        assert sorted(harness.sleep.calls) == [0.5, 2.0]


class TestEndToEnd:
    """Parallel source plus a rate-limited group with one throttled member."""

    def test_rate_limited_member_recovers(self) -> None:
        """Test that fields are complete and delays cover retry and spacing."""
        g1 = SequentialGroup(group_id="g1", inter_delay_seconds=1.0)
        harness = Harness(
            {
                "/protocols": [json_response([{"name": "Aave"}])],
                "/feeA": [
                    httpx.Response(429, headers={"Retry-After": "2"}),
                    json_response({"fees": 1}),
                ],
                "/feeB": [json_response({"fees": 2})],
            }
        )
        catalog = SourceCatalog(
            sources=[
                parallel("protocols"),
                SourceDescriptor(name="feeA", url=f"{BASE_URL}/feeA", concurrency=g1),
                SourceDescriptor(name="feeB", url=f"{BASE_URL}/feeB", concurrency=g1),
            ]
        )

        result = harness.coordinator.aggregate(catalog)

        assert result.fields == {
            "protocols": [{"name": "Aave"}],
            "feeA": {"fees": 1},
            "feeB": {"fees": 2},
        }
        assert result.errors == []
        assert harness.retry_sleep.calls == [2.0]
        assert harness.sleep.calls == [1.0]
        assert harness.retry_sleep.total + harness.sleep.total >= 3.0
        feea_index = max(
            i for i, r in enumerate(harness.transport.requests) if r.url.path == "/feeA"
        )
        feeb_index = next(
            i for i, r in enumerate(harness.transport.requests) if r.url.path == "/feeB"
        )
        assert feea_index < feeb_index


class TestResultShape:
    """Tests for the serialized response."""

    def test_response_dict(self) -> None:
        """Test fields, _errors, and _meta keys."""
        harness = Harness(
            {"/a": [json_response({"a": 1})]},
            cache_control=cache_control_header(300, 600),
        )
        catalog = SourceCatalog(sources=[parallel("a"), parallel("b")])

        data = harness.coordinator.aggregate(catalog).to_dict()

        assert data["a"] == {"a": 1}
        assert data["b"] is None
        assert data[ERRORS_KEY] == [
            {"source": "b", "error": f"HTTP 404: {BASE_URL}/b"}
        ]
        meta = data[META_KEY]
        assert meta["generatedAt"] == FIXED_NOW.isoformat()
        assert meta["cacheStats"] == {"total": 1, "fresh": 1, "stale": 0}
        assert meta["sourceCount"] == 2
        assert meta["cacheControl"] == "s-maxage=300, stale-while-revalidate=600"
        assert meta["durationMs"] >= 0

    def test_no_errors_key_when_all_succeed(self) -> None:
        """Test that _errors is omitted on full success."""
        harness = Harness({"/a": [json_response(1)]})

        data = harness.coordinator.aggregate([parallel("a")]).to_dict()

        assert ERRORS_KEY not in data
        assert META_KEY in data

    def test_to_json_round_trips(self) -> None:
        """Test that the result serializes to valid JSON."""
        harness = Harness({"/a": [json_response({"price": 1.5})]})

        text = harness.coordinator.aggregate([parallel("a")]).to_json(indent=2)

        assert json.loads(text)["a"] == {"price": 1.5}

    def test_empty_catalog(self) -> None:
        """Test that no sources yields an empty result with metadata."""
        harness = Harness({})

        result = harness.coordinator.aggregate(SourceCatalog())

        assert result.fields == {}
        assert result.errors == []
        assert result.meta is not None
        assert result.meta.source_count == 0


class TestTransforms:
    """Tests for post-merge transforms."""

    def test_paginated_pages_merged(self) -> None:
        """Test that page fields collapse into one list."""
        harness = Harness(
            {"/p1": [json_response([1, 2])], "/p2": [json_response([3])]},
            transforms=[ConcatMerge("coins", ["p1", "p2"], drop_sources=True)],
        )
        catalog = SourceCatalog(sources=[grouped("p1"), grouped("p2")])

        result = harness.coordinator.aggregate(catalog)

        assert result.fields == {"coins": [1, 2, 3]}

    def test_failed_page_is_still_reported(self) -> None:
        """Test that merging keeps the page error in the error list."""
        harness = Harness(
            {"/p1": [json_response([1])]},
            transforms=[ConcatMerge("coins", ["p1", "p2"], drop_sources=True)],
        )
        catalog = SourceCatalog(sources=[grouped("p1"), grouped("p2")])

        result = harness.coordinator.aggregate(catalog)

        assert result.fields == {"coins": [1]}
        assert [e.source for e in result.errors] == ["p2"]


class TestCatalogValidation:
    """Tests for catalog validation at aggregation time."""

    def test_duplicate_names_rejected(self) -> None:
        """Test that a sequence with duplicate names is refused."""
        harness = Harness({})

        with pytest.raises(ValueError, match="Duplicate source name"):
            harness.coordinator.aggregate([parallel("a"), parallel("a")])

    def test_cache_control_header_format(self) -> None:
        """Test the Cache-Control directive."""
        assert cache_control_header(300, 600) == (
            "s-maxage=300, stale-while-revalidate=600"
        )


class TestConcurrency:
    """Tests for how tasks are scheduled on the worker pool."""

    def test_all_tasks_run_at_once(self) -> None:
        """Test that twelve parallel sources and a group start together."""
        names = [f"s{i}" for i in range(12)]
        fetcher = BarrierCachedFetcher(parties=13, waiting={*names, "g1"})
        coordinator = AggregationCoordinator(
            fetcher,  # type: ignore[arg-type]
            sleep=SleepRecorder(),
        )
        catalog = SourceCatalog(
            sources=[*(parallel(n) for n in names), grouped("g1"), grouped("g2")]
        )

        result = coordinator.aggregate(catalog)

        assert result.errors == []
        assert result.fields["s11"] == ["s11"]
        assert result.fields["g2"] == ["g2"]


class TestRequestContext:
    """Tests for log context propagation into worker threads."""

    def test_request_id_reaches_every_task(self) -> None:
        """Test that parallel and grouped fetches see the bound request id."""
        fetcher = ContextRecordingCachedFetcher()
        coordinator = AggregationCoordinator(
            fetcher,  # type: ignore[arg-type]
            sleep=SleepRecorder(),
        )
        catalog = SourceCatalog(
            sources=[parallel("tvl"), parallel("fees"), grouped("p1"), grouped("p2")]
        )

        bind_request_context("req-123")
        try:
            coordinator.aggregate(catalog)
        finally:
            clear_request_context()

        assert fetcher.seen == {
            "tvl": "req-123",
            "fees": "req-123",
            "p1": "req-123",
            "p2": "req-123",
        }

    def test_context_does_not_leak_between_requests(self) -> None:
        """Test that a later unbound request sees no stale request id."""
        fetcher = ContextRecordingCachedFetcher()
        coordinator = AggregationCoordinator(
            fetcher,  # type: ignore[arg-type]
            sleep=SleepRecorder(),
        )
        catalog = SourceCatalog(sources=[parallel("tvl")])

        bind_request_context("req-1")
        try:
            coordinator.aggregate(catalog)
        finally:
            clear_request_context()
        coordinator.aggregate(catalog)

        assert fetcher.seen == {"tvl": None}
