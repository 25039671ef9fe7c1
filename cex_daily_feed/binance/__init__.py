"""Binance USDT perpetual daily feed.

Ranks pairs by 24h quote volume, tracks how long each pair has been outside
the top-N universe, and keeps a DuckDB table of daily candles up to date.
"""

__all__ = [
    "api",
    "db",
    "fetcher",
    "models",
    "pipeline",
    "scheduler",
    "tracker",
]
