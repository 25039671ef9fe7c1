from __future__ import annotations

import json
import os
import signal
import threading
import time
from pathlib import Path

import pytest

from cex_daily_feed.binance import cli, scheduler
from cex_daily_feed.binance.cli import RunConfig, main, parse_args, run_service
from cex_daily_feed.binance.pipeline import RunOutcome, RunResult
from cex_daily_feed.config import DEFAULT_SCHEMA_PATH
from cex_daily_feed.tick_engine import StopToken


install_signal_handlers = cli._install_signal_handlers


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"main_exchange": "binance", "database_path": str(tmp_path / "feed.duckdb")}))
    return path


@pytest.fixture(autouse=True)
def _no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "_install_signal_handlers", lambda token: None)


def test_parse_args_defaults(config_file):
    cfg = parse_args(["--config", str(config_file)])
    assert cfg.config_path == config_file
    assert cfg.schema_path == DEFAULT_SCHEMA_PATH
    assert cfg.check_interval == 30.0
    assert cfg.tick_interval == 1.0
    assert not cfg.once and cfg.target_date is None


def test_parse_args_once_with_target_date(config_file):
    cfg = parse_args(["-c", str(config_file), "--once", "--target-date", "2024-01-18", "-i", "5"])
    assert cfg.once
    assert cfg.target_date == 20240118
    assert cfg.check_interval == 5.0


@pytest.mark.parametrize(
    "extra",
    [["--target-date", "2024-01-18"], ["--once", "--target-date", "18/01/2024"]],
)
def test_parse_args_rejects_bad_target_date(config_file, extra):
    with pytest.raises(SystemExit):
        parse_args(["--config", str(config_file), *extra])


def test_main_once_runs_single_ingestion(monkeypatch, config_file, tmp_path):
    calls = []

    def fake_run_once(cfg, target):
        calls.append((cfg, target))
        return RunResult(RunOutcome.SUCCESS_WITH_DATA, target)

    monkeypatch.setattr(cli, "run_once", fake_run_once)
    assert main(["--config", str(config_file), "--once", "--target-date", "2024-01-18"]) == 0
    cfg, target = calls[0]
    assert target == 20240118
    assert cfg.database_path == tmp_path / "feed.duckdb"


def test_main_once_failed_run_exit_code(monkeypatch, config_file):
    monkeypatch.setattr(cli, "run_once", lambda cfg, target: RunResult(RunOutcome.FAILURE, target, reason="x"))
    assert main(["--config", str(config_file), "--once", "--target-date", "2024-01-18"]) == 1


def test_main_invalid_config_exit_code(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"main_exchange": "binance"}))
    assert main(["--config", str(path), "--once"]) == 2


def test_main_unexpected_error_exit_code(monkeypatch, config_file):
    def boom(cfg, token=None):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(cli, "run_service", boom)
    assert main(["--config", str(config_file)]) == 3
    with pytest.raises(RuntimeError):
        main(["--config", str(config_file), "--debug"])


def test_run_service_returns_when_stopped(monkeypatch, config_file):
    monkeypatch.setattr(scheduler, "run_once", lambda cfg, target: pytest.fail("no run after stop"))
    token = StopToken()
    token.stop()
    cfg = RunConfig(config_path=config_file, start_delay=0.0)
    assert run_service(cfg, token) == 0


@pytest.fixture
def restore_signal_handlers():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_signal_sets_stop_token(restore_signal_handlers, signum):
    token = StopToken()
    install_signal_handlers(token)
    os.kill(os.getpid(), signum)
    assert token.wait(1.0)


def test_sigterm_stops_running_service_within_a_tick(monkeypatch, config_file, restore_signal_handlers):
    monkeypatch.setattr(scheduler, "run_once", lambda cfg, target: RunResult(RunOutcome.SUCCESS_NO_OP, target))
    token = StopToken()
    install_signal_handlers(token)
    cfg = RunConfig(
        config_path=config_file, check_interval=0.05, tick_interval=0.05, tick_timeout=1.0, start_delay=0.0
    )
    codes = []
    service = threading.Thread(target=lambda: codes.append(run_service(cfg, token)))
    service.start()
    time.sleep(0.2)
    assert service.is_alive()

    t0 = time.monotonic()
    os.kill(os.getpid(), signal.SIGTERM)
    service.join(2.0)
    assert token.stopped
    assert not service.is_alive()
    assert time.monotonic() - t0 < 1.0
    assert codes == [0]
