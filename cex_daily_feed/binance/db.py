from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

import duckdb  # type: ignore
import pandas as pd
from loguru import logger

from ..dates import format_ymd, parse_ymd
from ..errors import ParseError, StorageError
from .models import EMPTY_DATE, Candle, CandleSet, TrackedState


TRACKED_TABLE = "tracked_pairs"
OHLCV_TABLE = "ohlcv_data"
START_TABLE = "date_of_start"

OHLCV_COLUMNS = ["pair", "date", "open", "high", "low", "close", "volume"]


def _connect(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(db_path))


def ensure_tables(con) -> None:
    con.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TRACKED_TABLE} (
          date TEXT PRIMARY KEY,
          json TEXT NOT NULL
        );
        """
    )
    con.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {OHLCV_TABLE} (
          pair TEXT NOT NULL,
          date INTEGER NOT NULL,
          open DOUBLE,
          high DOUBLE,
          low DOUBLE,
          close DOUBLE,
          volume DOUBLE,
          PRIMARY KEY (pair, date)
        );
        """
    )
    con.execute(f"CREATE TABLE IF NOT EXISTS {START_TABLE} (id TEXT PRIMARY KEY);")


def mark_date_of_start(con, ymd: int) -> bool:
    """Write the earliest-date marker unless one exists. Returns True when written."""
    before = con.execute(f"SELECT COUNT(*) FROM {START_TABLE}").fetchone()[0]
    if before:
        return False
    con.execute(
        f"""
        INSERT INTO {START_TABLE} (id)
        SELECT ?
        WHERE NOT EXISTS (SELECT 1 FROM {START_TABLE});
        """,
        [str(ymd)],
    )
    return True


def read_date_of_start(con) -> Optional[str]:
    row = con.execute(f"SELECT id FROM {START_TABLE} LIMIT 1").fetchone()
    return None if row is None else str(row[0])


def open_database(db_path: Path, start_ymd: int):
    """Open (or create) the store, ensure its tables and the date-of-start marker.

    Raises StorageError; the caller owns the returned connection and must close it.
    """
    try:
        con = _connect(Path(db_path))
    except (duckdb.Error, OSError) as e:
        raise StorageError(f"could not open database {db_path}: {e}") from e
    try:
        ensure_tables(con)
        if mark_date_of_start(con, start_ymd):
            logger.info(f"date_of_start initialised to {start_ymd}")
    except duckdb.Error as e:
        con.close()
        raise StorageError(f"schema setup failed for {db_path}: {e}") from e
    return con


def read_tracked_state(con) -> TrackedState:
    """The only tracked_pairs row, or an empty state (EMPTY_DATE) when there is none.

    Raises ParseError when the stored json is unreadable.
    """
    row = con.execute(f"SELECT date, json FROM {TRACKED_TABLE} LIMIT 1").fetchone()
    if row is None or row[0] is None or row[1] is None:
        return TrackedState.empty()
    date_text, json_text = row
    try:
        as_of = parse_ymd(str(date_text))
    except ValueError:
        logger.error(f"tracked_pairs has an invalid date {date_text!r}; treating as empty date")
        as_of = EMPTY_DATE
    try:
        raw = json.loads(json_text)
        if not isinstance(raw, dict):
            raise TypeError(f"expected an object, got {type(raw).__name__}")
        pairs = {str(pair): int(days) for pair, days in raw.items()}
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise ParseError(f"tracked_pairs json unreadable: {e}") from e
    return TrackedState(as_of, pairs)


def replace_tracked_state(con, state: TrackedState) -> None:
    """Replace the single tracked_pairs row. Raises StorageError."""
    payload = json.dumps({pair: int(days) for pair, days in sorted(state.pairs.items())})
    date_text = format_ymd(state.as_of)
    try:
        con.begin()
        # Same-date row is updated in place: DuckDB rejects delete + re-insert of one key per transaction.
        con.execute(f"DELETE FROM {TRACKED_TABLE} WHERE date <> ?", [date_text])
        con.execute(
            f"""
            INSERT INTO {TRACKED_TABLE} (date, json) VALUES (?, ?)
            ON CONFLICT (date) DO UPDATE SET json = excluded.json;
            """,
            [date_text, payload],
        )
        con.commit()
    except duckdb.Error as e:
        _rollback(con)
        raise StorageError(f"storing tracked pairs failed: {e}") from e
    logger.info(f"Stored tracked_pairs for {format_ymd(state.as_of)} ({len(state.pairs)} pairs)")


def candles_to_dataframe(candles: CandleSet) -> pd.DataFrame:
    rows = [
        {
            "pair": pair,
            "date": int(ymd),
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
        }
        for pair, days in candles.items()
        for ymd, c in days.items()
    ]
    if not rows:
        return pd.DataFrame(columns=OHLCV_COLUMNS)
    return pd.DataFrame(rows, columns=OHLCV_COLUMNS).sort_values(["pair", "date"], kind="mergesort")


def upsert_candles(con, candles: CandleSet) -> int:
    """Insert-or-overwrite every candle keyed by (pair, date). Returns rows written. Raises StorageError."""
    df = candles_to_dataframe(candles)
    if df.empty:
        logger.warning("No OHLCV data to store.")
        return 0
    try:
        con.begin()
        con.register("incoming_candles", df)
        con.execute(
            f"""
            INSERT INTO {OHLCV_TABLE} (pair, date, open, high, low, close, volume)
            SELECT pair, date, open, high, low, close, volume FROM incoming_candles
            ON CONFLICT (pair, date) DO UPDATE SET
              open = excluded.open,
              high = excluded.high,
              low = excluded.low,
              close = excluded.close,
              volume = excluded.volume;
            """
        )
        con.unregister("incoming_candles")
        con.commit()
    except duckdb.Error as e:
        _rollback(con)
        raise StorageError(f"storing OHLCV failed: {e}") from e
    logger.info(f"Stored {len(df)} OHLCV candles (pairs: {len(candles)})")
    return len(df)


def max_date_for_pair(con, pair: str) -> Optional[int]:
    row = con.execute(f"SELECT MAX(date) FROM {OHLCV_TABLE} WHERE pair = ?", [pair]).fetchone()
    return None if row is None or row[0] is None else int(row[0])


def max_date(con) -> Optional[int]:
    row = con.execute(f"SELECT MAX(date) FROM {OHLCV_TABLE}").fetchone()
    return None if row is None or row[0] is None else int(row[0])


def read_candles(con, pair: str) -> pd.DataFrame:
    """All stored candles of one pair ordered by date: date, open, high, low, close, volume."""
    return con.execute(
        f"""
        SELECT date, open, high, low, close, volume
        FROM {OHLCV_TABLE}
        WHERE pair = ?
        ORDER BY date ASC
        """,
        [pair],
    ).fetch_df()


def latest_candle(con, pair: str) -> Optional[Tuple[int, Candle]]:
    row = con.execute(
        f"""
        SELECT date, open, high, low, close, volume
        FROM {OHLCV_TABLE}
        WHERE pair = ?
        ORDER BY date DESC
        LIMIT 1
        """,
        [pair],
    ).fetchone()
    if row is None:
        return None
    return int(row[0]), Candle(*(float(v) for v in row[1:]))


def coverage_stats(con, pair: Optional[str] = None) -> Optional[tuple[int, int, int]]:
    q = f"SELECT MIN(date), MAX(date), COUNT(*) FROM {OHLCV_TABLE}"
    params: list = []
    if pair is not None:
        q += " WHERE pair = ?"
        params.append(pair)
    res = con.execute(q, params).fetchone()
    if res is None or res[0] is None:
        return None
    return int(res[0]), int(res[1]), int(res[2])


def _rollback(con) -> None:
    try:
        con.rollback()
    except duckdb.Error as e:
        logger.debug(f"rollback after failed write: {e}")
