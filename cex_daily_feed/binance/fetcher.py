from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Mapping, Tuple

from loguru import logger

from ..dates import shift_days, to_unix_millis
from ..errors import ParseError, TransportError
from .api import DEFAULT_TIMEOUT, Kline, fetch_klines, klines_to_dataframe
from .models import Candle, CandleSet
from .tracker import MAX_BACKFILL_DAYS


FETCH_BATCH_SIZE = 8
DAILY_INTERVAL = "1d"


def fetch_window(days: int, target: int) -> Tuple[int, int, int]:
    """Clamp `days` to [1, 100] and return (days, first day, day after target)."""
    days = min(max(int(days), 1), MAX_BACKFILL_DAYS)
    return days, shift_days(target, -(days - 1)), shift_days(target, 1)


def parse_daily_candles(klines: List[Kline], target: int) -> Dict[int, Candle]:
    """Daily candles keyed by YYYYMMDD; anything dated after `target` is dropped. Raises ParseError."""
    df = klines_to_dataframe(klines)
    df = df[df["date"] <= target]
    return {
        int(row.date): Candle(float(row.open), float(row.high), float(row.low), float(row.close), float(row.volume))
        for row in df.itertuples(index=False)
    }


def fetch_pair_candles(pair: str, days: int, target: int, timeout: float = DEFAULT_TIMEOUT) -> Dict[int, Candle]:
    """Fetch up to `days` candles ending at `target`. Failures are logged and yield no candles."""
    days, start, end_exclusive = fetch_window(days, target)
    logger.info(f"[{pair}] Fetch {days} days: {start} -> {target} (endExclusive={end_exclusive})")
    try:
        klines = fetch_klines(
            pair,
            DAILY_INTERVAL,
            days,
            start_ms=to_unix_millis(start),
            end_ms=to_unix_millis(end_exclusive),
            timeout=timeout,
        )
        return parse_daily_candles(klines, target)
    except TransportError as e:
        logger.error(f"[{pair}] request failed: {e}")
    except ParseError as e:
        logger.error(f"[{pair}] parse failed: {e}")
    return {}


def _batches(pairs: List[str], size: int) -> List[List[str]]:
    return [pairs[i : i + size] for i in range(0, len(pairs), size)]


def fetch_candle_set(
    plan: Mapping[str, int],
    target: int,
    *,
    batch_size: int = FETCH_BATCH_SIZE,
    timeout: float = DEFAULT_TIMEOUT,
) -> CandleSet:
    """Fetch every planned pair, `batch_size` at a time, and merge into one CandleSet.

    A batch finishes completely before the next one starts.
    """
    result: CandleSet = {}
    merge_lock = threading.Lock()

    def _worker(pair: str) -> None:
        candles = fetch_pair_candles(pair, plan[pair], target, timeout)
        if not candles:
            return
        with merge_lock:
            result.setdefault(pair, {}).update(candles)

    pairs = list(plan)
    for batch in _batches(pairs, max(int(batch_size), 1)):
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="ohlcv-fetch") as pool:
            futures = {pool.submit(_worker, pair): pair for pair in batch}
            wait(futures)
        for fut, pair in futures.items():
            exc = fut.exception()
            if exc is not None:
                logger.opt(exception=exc).error(f"[{pair}] fetch worker crashed")

    logger.info(f"fetch complete: {len(result)}/{len(pairs)} pairs returned candles")
    return result


def prune_future_candles(candles: CandleSet, cutoff: int) -> CandleSet:
    """Drop candles dated after `cutoff` and pairs left without candles."""
    pruned: CandleSet = {}
    for pair, days in candles.items():
        kept = {ymd: c for ymd, c in days.items() if ymd <= cutoff}
        if kept:
            pruned[pair] = dict(sorted(kept.items()))
    return pruned
