from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Set
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen
import json

import pandas as pd
from loguru import logger

from ..dates import utc_date_of_millis
from ..errors import ParseError, TransportError


BINANCE_FAPI = "https://fapi.binance.com"
USER_AGENT = "cex-daily-feed/1.0"
DEFAULT_TIMEOUT = 15.0

TOP_N = 50
QUOTE_ASSET = "USDT"


@dataclass(frozen=True)
class Kline:
    open_time_ms: int
    open: str
    high: str
    low: str
    close: str
    volume: str
    close_time_ms: Optional[int] = None


def _get_json(url: str, timeout: float) -> Any:
    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except HTTPError as e:
        raise TransportError(f"HTTP {e.code} from {url}") from e
    except (URLError, OSError, HTTPException) as e:
        raise TransportError(f"request to {url} failed: {e}") from e
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"invalid JSON from {url}: {e}") from e


def _build_klines_url(
    symbol: str,
    interval: str,
    limit: int,
    start_ms: Optional[int] = None,
    end_ms: Optional[int] = None,
) -> str:
    params: dict[str, Any] = {"symbol": symbol, "interval": interval, "limit": limit}
    if start_ms is not None:
        params["startTime"] = start_ms
    if end_ms is not None:
        params["endTime"] = end_ms
    return f"{BINANCE_FAPI}/fapi/v1/klines?{urlencode(params)}"


def fetch_klines(
    symbol: str,
    interval: str,
    limit: int,
    *,
    start_ms: Optional[int] = None,
    end_ms: Optional[int] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[Kline]:
    """Fetch klines from the Binance Futures API.

    Returns a list of Kline with string price/volume fields as returned by the API.
    Raises TransportError or ParseError.
    """
    url = _build_klines_url(symbol, interval, limit, start_ms, end_ms)
    payload = _get_json(url, timeout)
    if not isinstance(payload, list):
        raise ParseError(f"unexpected klines payload for {symbol}: {payload!r:.200}")
    klines: List[Kline] = []
    try:
        for row in payload:
            # [ openTime, open, high, low, close, volume, closeTime, quoteAssetVolume,
            #   numberOfTrades, takerBuyBaseAssetVolume, takerBuyQuoteAssetVolume, ignore ]
            klines.append(
                Kline(
                    open_time_ms=int(row[0]),
                    open=str(row[1]),
                    high=str(row[2]),
                    low=str(row[3]),
                    close=str(row[4]),
                    volume=str(row[5]),
                    close_time_ms=int(row[6]) if len(row) > 6 else None,
                )
            )
    except (TypeError, ValueError, IndexError, KeyError) as e:
        raise ParseError(f"malformed kline row for {symbol}: {e}") from e
    return klines


def klines_to_dataframe(klines: List[Kline]) -> pd.DataFrame:
    """Map raw daily klines into a DataFrame: date (YYYYMMDD int), open, high, low, close, volume.

    - date: UTC calendar day of the kline open time
    - numerical columns: float64
    - sorted ascending by date
    Raises ParseError when a numeric field does not parse.
    """
    cols = ["date", "open", "high", "low", "close", "volume"]
    if not klines:
        return pd.DataFrame(columns=cols).astype(
            {"date": "int64", "open": float, "high": float, "low": float, "close": float, "volume": float}
        )
    try:
        df = pd.DataFrame(
            [
                {
                    "date": k.open_time_ms,
                    "open": float(k.open),
                    "high": float(k.high),
                    "low": float(k.low),
                    "close": float(k.close),
                    "volume": float(k.volume),
                }
                for k in klines
            ]
        )
    except ValueError as e:
        raise ParseError(f"non-numeric kline field: {e}") from e
    df["date"] = pd.Series([utc_date_of_millis(ms) for ms in df["date"]], index=df.index, dtype="int64")
    df = df.sort_values("date", kind="mergesort").reset_index(drop=True)
    return df


def fetch_tickers_24h(timeout: float = DEFAULT_TIMEOUT) -> List[dict]:
    payload = _get_json(f"{BINANCE_FAPI}/fapi/v1/ticker/24hr", timeout)
    if not isinstance(payload, list):
        raise ParseError(f"unexpected ticker payload: {payload!r:.200}")
    return payload


def rank_top_pairs(tickers: List[dict], n: int = TOP_N, quote_asset: str = QUOTE_ASSET) -> List[str]:
    """Symbols ending in `quote_asset`, by descending 24h quote volume, at most `n`.

    Equal volumes keep their source order (stable sort).
    """
    if not tickers:
        return []
    try:
        df = pd.DataFrame(
            [{"symbol": str(t["symbol"]), "quoteVolume": t["quoteVolume"]} for t in tickers]
        )
    except (KeyError, TypeError) as e:
        raise ParseError(f"malformed ticker entry: {e}") from e
    mask = (df["symbol"].str.len() > len(quote_asset)) & df["symbol"].str.endswith(quote_asset)
    df = df[mask].copy()
    try:
        df["quoteVolume"] = pd.to_numeric(df["quoteVolume"], errors="raise").astype(float)
    except (TypeError, ValueError) as e:
        raise ParseError(f"non-numeric quoteVolume: {e}") from e
    df = df.sort_values("quoteVolume", ascending=False, kind="mergesort")
    return df["symbol"].head(n).tolist()


def fetch_top_pairs(
    n: int = TOP_N, quote_asset: str = QUOTE_ASSET, timeout: float = DEFAULT_TIMEOUT
) -> Set[str]:
    """Top-N pairs by 24h quote volume. Empty on any failure; callers abort the cycle on empty."""
    try:
        tickers = fetch_tickers_24h(timeout)
        return set(rank_top_pairs(tickers, n, quote_asset))
    except (TransportError, ParseError) as e:
        logger.error(f"Top-{n} snapshot failed: {e}")
        return set()
