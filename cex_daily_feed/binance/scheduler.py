from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from ..config import ConfigPublisher, FeedConfig
from ..dates import as_utc_naive, next_utc_midnight, previous_utc_day, time_until_utc_midnight
from ..tick_engine import StopToken, TickEngine
from .pipeline import RunResult, run_once


@dataclass
class IngestContext:
    """State owned by the daily scheduler. `config` is the configuration in force."""

    config: FeedConfig


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailyIngestScheduler:
    """Ticks every `interval` seconds; runs the ingestion once per UTC day.

    The first tick triggers a run immediately, later runs fire at each UTC
    midnight and target the previous UTC day. A pending configuration from the
    publisher is adopted at the start of every tick. Overlapping ticks never
    run the ingestion twice at once.
    """

    def __init__(
        self,
        ctx: IngestContext,
        publisher: Optional[ConfigPublisher] = None,
        interval: float = 1.0,
        timeout: float = 30.0,
        start_delay: float = 2.0,
        *,
        stop_token: Optional[StopToken] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.ctx = ctx
        self.publisher = publisher
        self._clock = clock
        self._run_lock = threading.Lock()
        self._first_iteration = True
        self._next_midnight = next_utc_midnight(clock())
        self.last_result: Optional[RunResult] = None
        self.engine = TickEngine(
            self.tick,
            interval=interval,
            timeout=timeout,
            start_delay=start_delay,
            stop_token=stop_token,
            on_timeout=self._on_timeout,
            name="daily-ingest",
        )

    def _on_timeout(self) -> None:
        logger.warning("Ingestion tick still running past its timeout; it will finish in the background")

    def _due(self, now: datetime) -> bool:
        return self._first_iteration or as_utc_naive(now) >= self._next_midnight

    def apply_pending_config(self) -> bool:
        if self.publisher is None or not self.publisher.has_pending:
            return False
        cfg = self.publisher.take_pending()
        if cfg is None:
            return False
        logger.info("Applying new config...")
        self.ctx.config = cfg
        logger.info(f"Config applied:\n{json.dumps(cfg.to_json_obj(), indent=4)}")
        return True

    def tick(self) -> Optional[RunResult]:
        now = self._clock()
        logger.debug(f"Tick at {now:%Y-%m-%d %H:%M:%S} UTC, {time_until_utc_midnight(now)}")

        self.apply_pending_config()

        if not self._due(now):
            return None
        if not self._run_lock.acquire(blocking=False):
            logger.debug("Previous ingestion run still in progress; skipping this trigger")
            return None
        try:
            if not self._due(now):
                return None
            logger.info("Midnight event triggered")
            # Ticks that arrive while this run is in progress are not due.
            self._first_iteration = False
            self._next_midnight = next_utc_midnight(now)
            result = run_once(self.ctx.config, previous_utc_day(now))
            self.last_result = result
            logger.info(f"Ingestion run finished: {result.outcome.value}")
            return result
        finally:
            self._run_lock.release()

    def run(self) -> None:
        """Start the config publisher in the background and tick on the calling thread until stopped."""
        if self.publisher is not None:
            self.publisher.start()
        try:
            self.engine.run()
        finally:
            if self.publisher is not None:
                self.publisher.stop()

    def start(self) -> None:
        if self.publisher is not None:
            self.publisher.start()
        self.engine.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.engine.stop(timeout)
        if self.publisher is not None:
            self.publisher.stop(timeout)
