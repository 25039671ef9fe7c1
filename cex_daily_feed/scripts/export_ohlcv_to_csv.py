#!/usr/bin/env python3
"""
Export the daily OHLCV rows of one pair from the feed's DuckDB file to CSV.

Usage example:
  python -m cex_daily_feed.scripts.export_ohlcv_to_csv \
    --duckdb data/binance_usdt_perp_1d.duckdb \
    --pair BTCUSDT --out data/BTCUSDT_1d.csv --overwrite

Notes:
  - Outputs columns: date, open, high, low, close, volume (date as YYYYMMDD)
  - By default prevents overwriting unless --overwrite is passed
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Optional

import duckdb  # type: ignore

from cex_daily_feed.binance.db import coverage_stats, read_candles


COLUMNS = ["date", "open", "high", "low", "close", "volume"]


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export daily OHLCV of one pair from DuckDB to CSV")
    parser.add_argument("--duckdb", type=Path, required=True, help="Path to DuckDB file")
    parser.add_argument("--pair", required=True, help="Pair symbol, e.g. BTCUSDT")
    parser.add_argument("--out", type=Path, required=True, help="Output CSV path")
    parser.add_argument("--overwrite", action="store_true", help="Allow overwriting existing output file")
    args = parser.parse_args(argv)

    if not args.duckdb.exists():
        print(f"ERROR: DuckDB file not found: {args.duckdb}", file=sys.stderr)
        return 2
    out_path = args.out
    if out_path.exists() and not args.overwrite:
        print(f"ERROR: Output exists: {out_path}. Pass --overwrite to replace.", file=sys.stderr)
        return 2
    out_path.parent.mkdir(parents=True, exist_ok=True)

    con = duckdb.connect(str(args.duckdb), read_only=True)
    try:
        df = read_candles(con, args.pair)
        cov = coverage_stats(con, args.pair)
    finally:
        con.close()

    if df.empty:
        print(f"WARN: No rows stored for {args.pair}; writing empty CSV with header.")
    df = df[COLUMNS].copy()
    df.to_csv(out_path, index=False)
    if cov is not None:
        first, last, count = cov
        print(f"Wrote {count:,} rows to {out_path}")
        print(f"Range: {first} .. {last}")
    else:
        print(f"Wrote empty CSV to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
