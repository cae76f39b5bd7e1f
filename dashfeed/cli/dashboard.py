"""CLI commands for the dashboard data layer."""

import logging
import uuid

import click
import structlog

from dashfeed import __version__
from dashfeed.fetch.metrics import FetchMetrics
from dashfeed.observability.logging import bind_request_context, configure_logging
from dashfeed.service import DashboardService
from dashfeed.settings import get_settings
from dashfeed.sources.models import SequentialGroup


logger = structlog.get_logger()


def _setup_logging(json_logs: bool, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    configure_logging(level=log_level, json_format=json_logs)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Crypto dashboard data aggregation CLI."""


@cli.command()
@click.option("--pretty", is_flag=True, help="Indent the JSON output.")
@click.option(
    "--repeat",
    type=click.IntRange(min=1),
    default=1,
    help="Aggregate N times in one process (later runs reuse the warm cache).",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=True,
    help="Use JSON format for logs (default: true).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
def aggregate(pretty: bool, repeat: int, json_logs: bool, verbose: bool) -> None:
    """Fetch every configured source and print the aggregated JSON."""
    _setup_logging(json_logs, verbose)
    settings = get_settings()

    with DashboardService(settings) as service:
        result = None
        for iteration in range(repeat):
            bind_request_context(uuid.uuid4().hex[:12])
            result = service.aggregate()
            logger.info(
                "aggregate_iteration_done",
                iteration=iteration,
                errors=len(result.errors),
                cache_stats=result.meta.cache_stats if result.meta else None,
            )

        logger.info("fetch_metrics", **FetchMetrics.get_instance().to_dict())

        if result is not None:
            click.echo(result.to_json(indent=2 if pretty else None))


@cli.command()
@click.option(
    "--json-logs/--no-json-logs",
    default=False,
    help="Use JSON format for logs (default: false).",
)
def catalog(json_logs: bool) -> None:
    """List the configured sources with their concurrency class and TTL."""
    _setup_logging(json_logs, verbose=False)
    settings = get_settings()

    with DashboardService(settings) as service:
        for source in service.catalog.sources:
            group = source.concurrency
            if isinstance(group, SequentialGroup):
                klass = f"sequential({group.group_id}, {group.inter_delay_seconds}s)"
            else:
                klass = "parallel"
            click.echo(
                f"{source.name:<28} {klass:<32} "
                f"ttl={int(source.ttl_seconds)}s timeout={int(source.timeout_seconds)}s"
            )
        click.echo(f"Cache-Control: {service.cache_control}")


if __name__ == "__main__":
    cli()
