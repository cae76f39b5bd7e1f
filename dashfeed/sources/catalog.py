"""Typed catalog of the dashboard's data sources.

Built once per process from settings. Keyless providers are always present;
keyed providers are added only when their API key is configured.
"""

from dashfeed.orchestrator.transforms import ConcatMerge, PostMergeTransform
from dashfeed.settings.app import AppSettings
from dashfeed.sources.models import (
    PARALLEL,
    RequestOptions,
    SequentialGroup,
    SourceCatalog,
    SourceDescriptor,
)


DEFILLAMA_FREE_BASE = "https://api.llama.fi"
DEFILLAMA_PRO_BASE = "https://pro-api.llama.fi"
COINGECKO_BASE = "https://pro-api.coingecko.com/api/v3"
COINGLASS_BASE = "https://open-api-v3.coinglass.com"
ALTERNATIVE_BASE = "https://api.alternative.me"
TOKEN_TERMINAL_BASE = "https://api.tokenterminal.com/v2"

# CoinGecko market listing: 4 pages of 250 coins merged into one field
COINGECKO_MARKET_PAGES = 4
COINGECKO_MARKET_PAGE_SIZE = 250
COINGECKO_MARKETS_FIELD = "coinMarkets"

# Token Terminal allows 60 requests/minute
TOKEN_TERMINAL_GROUP = SequentialGroup(
    group_id="token_terminal", inter_delay_seconds=1.0
)
TOKEN_TERMINAL_METRICS = (
    "revenue",
    "fees",
    "earnings",
    "token_incentives",
    "price_to_sales",
    "price_to_earnings",
    "active_users",
)

# CoinGecko Pro allows 500 requests/minute
COINGECKO_GROUP = SequentialGroup(group_id="coingecko", inter_delay_seconds=0.5)


def defillama_url(path: str, api_key: str | None = None) -> str:
    """Build a DeFiLlama URL.

    The Pro API puts the key between host and path and prefixes API
    routes with /api.

    Args:
        path: Endpoint path starting with '/'.
        api_key: Optional Pro API key.

    Returns:
        Full URL.
    """
    if api_key:
        return f"{DEFILLAMA_PRO_BASE}/{api_key}/api{path}"
    return f"{DEFILLAMA_FREE_BASE}{path}"


def coingecko_market_page_name(page: int) -> str:
    """Source name of one CoinGecko market listing page."""
    return f"{COINGECKO_MARKETS_FIELD}Page{page}"


def _defillama_sources(settings: AppSettings, ttl: float) -> list[SourceDescriptor]:
    key = settings.defillama_api_key
    endpoints = {
        "protocols": "/protocols",
        "fees": "/overview/fees",
        "dexs": "/overview/dexs",
        "historicalTvl": "/v2/historicalChainTvl",
        "stablecoins": "/stablecoins",
    }
    return [
        SourceDescriptor(name=name, url=defillama_url(path, key), ttl_seconds=ttl)
        for name, path in endpoints.items()
    ]


def _coingecko_sources(api_key: str, ttl: float) -> list[SourceDescriptor]:
    request = RequestOptions(
        headers={"x-cg-pro-api-key": api_key, "Accept": "application/json"}
    )
    sources = [
        SourceDescriptor(
            name="globalMarket",
            url=f"{COINGECKO_BASE}/global",
            request=request,
            ttl_seconds=ttl,
        )
    ]
    for page in range(1, COINGECKO_MARKET_PAGES + 1):
        sources.append(
            SourceDescriptor(
                name=coingecko_market_page_name(page),
                url=(
                    f"{COINGECKO_BASE}/coins/markets?vs_currency=usd"
                    f"&order=market_cap_desc&per_page={COINGECKO_MARKET_PAGE_SIZE}"
                    f"&page={page}&sparkline=false"
                ),
                request=request,
                ttl_seconds=ttl,
                concurrency=COINGECKO_GROUP,
            )
        )
    return sources


def _coinglass_sources(api_key: str, ttl: float) -> list[SourceDescriptor]:
    request = RequestOptions(
        headers={"CG-API-KEY": api_key, "Accept": "application/json"}
    )
    endpoints = {
        "funding": "/api/futures/fundingRate/v2/home",
        "liquidation": "/api/futures/liquidation/v2/home",
        "etf": "/api/index/bitcoin-etf/history",
    }
    return [
        SourceDescriptor(
            name=name,
            url=f"{COINGLASS_BASE}{path}",
            request=request,
            ttl_seconds=ttl,
            concurrency=PARALLEL,
        )
        for name, path in endpoints.items()
    ]


def _token_terminal_sources(api_key: str, ttl: float) -> list[SourceDescriptor]:
    request = RequestOptions(
        headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"}
    )
    return [
        SourceDescriptor(
            name=f"tokenTerminal_{metric}",
            url=f"{TOKEN_TERMINAL_BASE}/metrics/{metric}",
            request=request,
            ttl_seconds=ttl,
            concurrency=TOKEN_TERMINAL_GROUP,
        )
        for metric in TOKEN_TERMINAL_METRICS
    ]


def build_dashboard_catalog(settings: AppSettings) -> SourceCatalog:
    """Build the dashboard's source catalog.

    Args:
        settings: Application settings holding API keys and TTL.

    Returns:
        Validated SourceCatalog.
    """
    ttl = settings.cache_ttl_seconds
    sources = _defillama_sources(settings, ttl)
    sources.append(
        SourceDescriptor(
            name="fearGreed",
            url=f"{ALTERNATIVE_BASE}/fng/?limit=365&format=json",
            ttl_seconds=ttl,
        )
    )

    if settings.coingecko_api_key:
        sources.extend(_coingecko_sources(settings.coingecko_api_key, ttl))
    if settings.coinglass_api_key:
        sources.extend(_coinglass_sources(settings.coinglass_api_key, ttl))
    if settings.token_terminal_api_key:
        sources.extend(_token_terminal_sources(settings.token_terminal_api_key, ttl))

    return SourceCatalog(sources=sources)


def build_dashboard_transforms(settings: AppSettings) -> list[PostMergeTransform]:
    """Build the post-merge adapters matching build_dashboard_catalog().

    Args:
        settings: Application settings.

    Returns:
        Transforms to pass to the aggregation coordinator.
    """
    transforms: list[PostMergeTransform] = []
    if settings.coingecko_api_key:
        transforms.append(
            ConcatMerge(
                target=COINGECKO_MARKETS_FIELD,
                sources=[
                    coingecko_market_page_name(page)
                    for page in range(1, COINGECKO_MARKET_PAGES + 1)
                ],
                drop_sources=True,
            )
        )
    return transforms
