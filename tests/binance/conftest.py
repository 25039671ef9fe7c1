from __future__ import annotations

from typing import Callable, Dict, List, Optional

import pytest

from cex_daily_feed.binance.api import Kline
from cex_daily_feed.config import FeedConfig
from cex_daily_feed.dates import shift_days, to_unix_millis, utc_date_of_millis


def make_k(ymd: int, open_val: float) -> Kline:
    ot = to_unix_millis(ymd)
    return Kline(
        open_time_ms=ot,
        open=str(open_val),
        high=str(open_val + 2),
        low=str(open_val - 2),
        close=str(open_val + 1),
        volume="10.0",
        close_time_ms=ot + 86_400_000 - 1,
    )


class FakeKlines:
    """Stands in for `fetch_klines`: serves one candle per day inside the requested window.

    `extra_days` adds candles past the window end, as a misbehaving API might.
    `failing` maps a symbol to the exception raised for it.
    """

    def __init__(
        self,
        extra_days: int = 0,
        failing: Optional[Dict[str, Exception]] = None,
        first_available: Optional[int] = None,
    ):
        self.extra_days = extra_days
        self.failing = failing or {}
        self.first_available = first_available
        self.calls: List[dict] = []

    def __call__(self, symbol, interval, limit, *, start_ms=None, end_ms=None, timeout=None):
        self.calls.append(
            {"symbol": symbol, "interval": interval, "limit": limit, "start_ms": start_ms, "end_ms": end_ms}
        )
        if symbol in self.failing:
            raise self.failing[symbol]
        day = utc_date_of_millis(start_ms)
        last = shift_days(utc_date_of_millis(end_ms), -1 + self.extra_days)
        out = []
        while day <= last and len(out) < limit + self.extra_days:
            if self.first_available is None or day >= self.first_available:
                out.append(make_k(day, 100.0 + len(out)))
            day = shift_days(day, 1)
        return out

    @property
    def symbols(self) -> List[str]:
        return [c["symbol"] for c in self.calls]


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "feed.duckdb"


@pytest.fixture
def feed_config(db_path) -> FeedConfig:
    return FeedConfig(main_exchange="binance", database_path=db_path)


@pytest.fixture
def fake_klines() -> Callable[..., FakeKlines]:
    return FakeKlines


@pytest.fixture
def make_kline() -> Callable[[int, float], Kline]:
    return make_k
