"""CEX Daily Feed - daily OHLCV ingestion for the top-N pairs of a crypto exchange.

Provides:
- Tick engine with soft timeouts and cooperative shutdown
- Hot-reloaded, schema-validated configuration
- Binance USDT perpetual top-N tracking and daily candle backfill
- DuckDB persistence layer
"""

__version__ = "0.1.0"

# Expose main submodules
from . import binance
from . import scripts

__all__ = ["binance", "scripts", "__version__"]
