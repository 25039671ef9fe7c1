"""CLI scripts for inspecting stored exchange data.

Scripts:
- export_ohlcv_to_csv: Export the stored daily candles of one pair to CSV

Usage:
    python -m cex_daily_feed.scripts.export_ohlcv_to_csv --help
"""

__all__ = [
    "export_ohlcv_to_csv",
]
