"""Tracked-pair state machine and backfill planning.

Each pair ever seen in the top-N universe carries a counter of days spent
outside it. Re-entering the universe resets the counter; staying out adds the
number of days since the previous state. The backfill plan is driven by the
newest candle stored for each tracked pair.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from loguru import logger

from ..dates import days_between, format_ymd
from ..errors import ClockAnomalyError
from . import db
from .models import TrackedState


MAX_BACKFILL_DAYS = 100


def day_diff(target: int, as_of: int) -> int:
    """Whole days from `as_of` to `target`. Raises ClockAnomalyError when not positive."""
    diff = days_between(target, as_of)
    if diff < 1:
        raise ClockAnomalyError(
            f"non-monotonic tracked state: as_of={format_ymd(as_of)} target={format_ymd(target)}", diff
        )
    return diff


def recompute_tracked_state(
    previous: TrackedState,
    top_pairs: Iterable[str],
    previous_exists: bool,
    target: int,
) -> TrackedState:
    top = set(top_pairs)

    if not previous_exists:
        return TrackedState(target, {pair: 0 for pair in sorted(top)})

    try:
        diff = day_diff(target, previous.as_of)
    except ClockAnomalyError as e:
        logger.error(f"{e} (diff={e.diff}); clamping day difference to 1")
        diff = 1

    pairs: Dict[str, int] = {pair: 0 for pair in top}
    for pair, days_out in previous.pairs.items():
        if pair not in top:
            pairs[pair] = days_out + diff
    return TrackedState(target, dict(sorted(pairs.items())))


def days_since_last_stored(last_stored: Optional[int], target: int) -> Optional[int]:
    """Days of candles to fetch for a pair, or None when it is already up to date."""
    if last_stored is None:
        return MAX_BACKFILL_DAYS
    if last_stored >= target:
        return None
    return min(max(days_between(target, last_stored), 1), MAX_BACKFILL_DAYS)


def compute_backfill_plan(con, tracked: TrackedState, target: int) -> Dict[str, int]:
    plan: Dict[str, int] = {}
    for pair in sorted(tracked.pairs):
        last = db.max_date_for_pair(con, pair)
        days = days_since_last_stored(last, target)
        if days is None:
            logger.debug(f"[{pair}] already up to date (last={last}, target={target}); skip")
            continue
        plan[pair] = days
        logger.debug(f"[{pair}] last={last} -> fetch {days} days")
    return plan
