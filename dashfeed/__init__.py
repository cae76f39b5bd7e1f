"""Data-fetch orchestration and caching layer for the market dashboard."""

__version__ = "0.1.0"
