from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping


# Stored as the as-of date when there is no previous tracked state.
EMPTY_DATE = 20000101


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    volume: float


# pair -> YYYYMMDD -> Candle
CandleSet = Dict[str, Dict[int, Candle]]


@dataclass(frozen=True)
class TrackedState:
    """Per-pair count of days spent outside the top-N universe, as of one UTC day."""

    as_of: int = EMPTY_DATE
    pairs: Mapping[str, int] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return self.as_of != EMPTY_DATE and bool(self.pairs)

    @classmethod
    def empty(cls) -> TrackedState:
        return cls(EMPTY_DATE, {})


def count_candles(candles: CandleSet) -> int:
    return sum(len(days) for days in candles.values())
