from __future__ import annotations

import argparse
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from ..config import DEFAULT_SCHEMA_PATH, ConfigPublisher
from ..dates import parse_ymd, previous_utc_day
from ..errors import ValidationError
from ..logs import setup_logging
from ..tick_engine import StopToken
from .pipeline import run_once
from .scheduler import DailyIngestScheduler, IngestContext


@dataclass
class RunConfig:
    config_path: Path
    schema_path: Path = DEFAULT_SCHEMA_PATH
    check_interval: float = 30.0
    tick_interval: float = 1.0
    tick_timeout: float = 30.0
    start_delay: float = 2.0
    debug: bool = False
    log_file: Optional[Path] = None
    once: bool = False
    target_date: Optional[int] = None


def _install_signal_handlers(token: StopToken) -> None:
    def _handler(signum, _frame) -> None:
        logger.info(f"Received signal {signum}; stopping")
        token.stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_service(cfg: RunConfig, token: Optional[StopToken] = None) -> int:
    token = token or StopToken()
    try:
        publisher = ConfigPublisher(
            cfg.config_path, cfg.schema_path, cfg.check_interval, stop_token=token
        )
    except ValidationError as e:
        logger.error(str(e))
        return 2

    if cfg.once:
        target = cfg.target_date or previous_utc_day()
        result = run_once(publisher.current, target)
        logger.info(f"Run finished: {result.outcome.value}")
        return 0 if result.ok else 1

    scheduler = DailyIngestScheduler(
        IngestContext(publisher.current),
        publisher,
        interval=cfg.tick_interval,
        timeout=cfg.tick_timeout,
        start_delay=cfg.start_delay,
        stop_token=token,
    )
    logger.info("Running... Press CTRL+C to stop.")
    scheduler.run()
    if not scheduler.engine.wait_idle(cfg.tick_timeout):
        logger.warning("Ingestion run still in progress; exiting once it finishes")
    logger.info("Shutting down daily feed.")
    return 0


def _ymd_arg(text: str) -> int:
    try:
        return parse_ymd(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {text!r}") from e


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    p = argparse.ArgumentParser(description="Daily OHLCV feed for the top-N Binance USDT perpetual pairs")
    p.add_argument("--config", "-c", type=Path, required=True, help="Path to JSON configuration file")
    p.add_argument("--schema", "-s", type=Path, default=DEFAULT_SCHEMA_PATH, help="Path to JSON schema file")
    p.add_argument("--check-interval", "-i", type=float, default=30.0, help="Seconds between configuration checks")
    p.add_argument("--tick-interval", type=float, default=1.0, help="Seconds between scheduler ticks")
    p.add_argument("--tick-timeout", type=float, default=30.0, help="Soft timeout of one tick in seconds")
    p.add_argument("--start-delay", type=float, default=2.0, help="Seconds to wait before the first tick")
    p.add_argument("--debug", "-d", action="store_true", help="Verbose logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also log to this rotating file")
    p.add_argument("--once", action="store_true", help="Run a single ingestion and exit")
    p.add_argument("--target-date", type=_ymd_arg, default=None, help="UTC day for --once (default: yesterday)")
    args = p.parse_args(argv)

    if args.target_date is not None and not args.once:
        p.error("--target-date requires --once")

    return RunConfig(
        config_path=args.config,
        schema_path=args.schema,
        check_interval=args.check_interval,
        tick_interval=args.tick_interval,
        tick_timeout=args.tick_timeout,
        start_delay=args.start_delay,
        debug=args.debug,
        log_file=args.log_file,
        once=args.once,
        target_date=args.target_date,
    )


def main(argv: Optional[list[str]] = None) -> int:
    cfg = parse_args(argv)
    setup_logging(cfg.debug, cfg.log_file)
    logger.debug("Debug mode ENABLED.")
    logger.info("Starting daily feed...")

    token = StopToken()
    _install_signal_handlers(token)
    try:
        return run_service(cfg, token)
    except Exception as e:  # surface clear error message
        logger.opt(exception=e).error(f"Fatal error: {e}")
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    sys.exit(main())
