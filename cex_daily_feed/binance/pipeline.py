"""Daily ingestion run.

open store -> load tracked state -> refresh top-N (unless already current)
-> recompute and store tracked state -> plan backfill -> fetch -> prune -> persist.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional

import duckdb  # type: ignore
from loguru import logger

from ..config import FeedConfig
from ..dates import format_ymd
from ..errors import ParseError, StorageError
from . import db
from .api import fetch_top_pairs
from .fetcher import fetch_candle_set, prune_future_candles
from .models import TrackedState, count_candles
from .tracker import compute_backfill_plan, recompute_tracked_state


REFERENCE_PAIR = "BTCUSDT"


class RunOutcome(str, enum.Enum):
    SUCCESS_WITH_DATA = "success-with-data"
    SUCCESS_NO_OP = "success-no-op"
    FAILURE = "failure"


@dataclass
class RunResult:
    outcome: RunOutcome
    target: int
    tracked: Optional[TrackedState] = None
    plan: Dict[str, int] = field(default_factory=dict)
    stored_rows: int = 0
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not RunOutcome.FAILURE


def _failure(target: int, reason: str, **kw) -> RunResult:
    logger.error(f"Run for {format_ymd(target)} failed: {reason}")
    return RunResult(RunOutcome.FAILURE, target, reason=reason, **kw)


def _log_summary(con, tracked: TrackedState) -> None:
    logger.debug(f"=== TRACKED DATA {format_ymd(tracked.as_of)} ===")
    for pair, days_out in tracked.pairs.items():
        logger.debug(f"Pair: {pair:<12} | Days out: {days_out}")
    latest = db.latest_candle(con, REFERENCE_PAIR)
    if latest is None:
        logger.warning(f"No {REFERENCE_PAIR} candles stored")
        return
    ymd, c = latest
    logger.info(
        f"{REFERENCE_PAIR} [{ymd}] O:{c.open:.4f} H:{c.high:.4f} L:{c.low:.4f} C:{c.close:.4f} V:{c.volume:.4f}"
    )


def run_once(cfg: FeedConfig, target: int) -> RunResult:
    """Bring the store up to date for the UTC day `target` (YYYYMMDD)."""
    date_str = format_ymd(target)
    logger.info(f"Ingestion run for {date_str} ({cfg.main_exchange}, db={cfg.database_path})")

    try:
        con = db.open_database(cfg.database_path, target)
    except StorageError as e:
        return _failure(target, str(e))

    try:
        logger.info(f"date_of_start: {db.read_date_of_start(con)}")

        try:
            previous = db.read_tracked_state(con)
        except ParseError as e:
            logger.error(f"{e}; starting from an empty tracked state")
            previous = TrackedState.empty()
        previous_exists = previous.exists

        if previous_exists and previous.as_of == target:
            logger.info(f"Tracked_pairs already up to date for {date_str}")
            tracked = previous
        else:
            logger.info(f"Fetching top-{cfg.top_n} volume pairs...")
            top = fetch_top_pairs(cfg.top_n, cfg.quote_asset, cfg.http_timeout_seconds)
            if not top:
                return _failure(target, f"top-{cfg.top_n} list is empty")
            tracked = recompute_tracked_state(previous, top, previous_exists, target)
            try:
                db.replace_tracked_state(con, tracked)
            except StorageError as e:
                return _failure(target, str(e))

        plan = compute_backfill_plan(con, tracked, target)
        if not plan:
            logger.info("OHLCV already up to date.")
            return RunResult(RunOutcome.SUCCESS_NO_OP, target, tracked=tracked)

        candles = fetch_candle_set(
            plan, target, batch_size=cfg.fetch_batch_size, timeout=cfg.http_timeout_seconds
        )
        candles = prune_future_candles(candles, target)
        if not candles:
            logger.warning(f"No OHLCV data returned for {date_str}")
            return RunResult(RunOutcome.SUCCESS_NO_OP, target, tracked=tracked, plan=plan)

        try:
            stored = db.upsert_candles(con, candles)
        except StorageError as e:
            return _failure(target, str(e), tracked=tracked, plan=plan)

        logger.info(f"OHLCV data stored for {date_str}: {count_candles(candles)} candles, {len(candles)} pairs")
        _log_summary(con, tracked)
        return RunResult(RunOutcome.SUCCESS_WITH_DATA, target, tracked=tracked, plan=plan, stored_rows=stored)
    except duckdb.Error as e:
        return _failure(target, f"store query failed: {e}")
    finally:
        con.close()
