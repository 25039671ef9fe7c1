"""UTC calendar-day helpers.

Dates travel through the feed as integers of the form YYYYMMDD (e.g. 20240118).
Conversions go through pandas Timestamps, always UTC-naive by convention.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pandas as pd


def as_utc_naive(now: Optional[datetime] = None) -> pd.Timestamp:
    """`now` (default: current time) as a UTC-naive Timestamp."""
    ts = pd.Timestamp(now or datetime.now(timezone.utc))
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_convert(None)
    return ts


def to_yyyymmdd(ts: pd.Timestamp | datetime) -> int:
    ts = pd.Timestamp(ts)
    return ts.year * 10000 + ts.month * 100 + ts.day


def from_yyyymmdd(ymd: int) -> pd.Timestamp:
    """Midnight (UTC-naive) of the given day. Raises ValueError on an impossible date."""
    ymd = int(ymd)
    return pd.Timestamp(year=ymd // 10000, month=(ymd // 100) % 100, day=ymd % 100)


def format_ymd(ymd: int) -> str:
    return from_yyyymmdd(ymd).strftime("%Y-%m-%d")


def parse_ymd(text: str) -> int:
    return to_yyyymmdd(datetime.strptime(text.strip(), "%Y-%m-%d"))


def shift_days(ymd: int, days: int) -> int:
    return to_yyyymmdd(from_yyyymmdd(ymd) + pd.Timedelta(days=days))


def days_between(later: int, earlier: int) -> int:
    """Whole calendar days from `earlier` to `later` (negative if reversed)."""
    return (from_yyyymmdd(later) - from_yyyymmdd(earlier)).days


def to_unix_millis(ymd: int) -> int:
    """Epoch milliseconds of 00:00 UTC on the given day."""
    return int(from_yyyymmdd(ymd).tz_localize("UTC").timestamp() * 1000)


def utc_date_of_millis(ms: int) -> int:
    return to_yyyymmdd(pd.to_datetime(int(ms), unit="ms", utc=True))


def previous_utc_day(now: Optional[datetime] = None) -> int:
    """The last fully closed UTC day, i.e. yesterday."""
    today = as_utc_naive(now).floor("D")
    return to_yyyymmdd(today - pd.Timedelta(days=1))


def next_utc_midnight(now: Optional[datetime] = None) -> pd.Timestamp:
    return as_utc_naive(now).floor("D") + pd.Timedelta(days=1)


def time_until_utc_midnight(now: Optional[datetime] = None) -> str:
    current = as_utc_naive(now)
    secs = int((next_utc_midnight(current) - current).total_seconds())
    return f"{secs // 3600:02d}h {(secs % 3600) // 60:02d}m {secs % 60:02d}s until UTC midnight"
