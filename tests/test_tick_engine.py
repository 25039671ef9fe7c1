from __future__ import annotations

import threading
import time

import pytest

from cex_daily_feed.tick_engine import StopToken, TickEngine


def _wait_for(cond, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.005)
    return cond()


def test_background_mode_ticks_and_stops():
    calls = []
    engine = TickEngine(lambda: calls.append(time.monotonic()), interval=0.02, timeout=0.5)
    engine.start()
    try:
        assert _wait_for(lambda: len(calls) >= 3)
    finally:
        engine.stop()
    assert not engine.running
    n = len(calls)
    time.sleep(0.1)
    assert len(calls) == n


def test_failing_work_does_not_stop_the_loop():
    def boom():
        raise RuntimeError("tick exploded")

    engine = TickEngine(boom, interval=0.01, timeout=0.5)
    engine.start()
    try:
        assert _wait_for(lambda: engine.failures >= 3)
    finally:
        engine.stop()
    assert engine.ticks >= 3


def test_timeout_fires_hook_without_cancelling_work():
    release = threading.Event()
    finished = []
    timed_out = threading.Event()

    def slow():
        release.wait(2.0)
        finished.append(True)

    engine = TickEngine(slow, interval=0.05, timeout=0.02, on_timeout=timed_out.set)
    engine.start()
    try:
        assert timed_out.wait(2.0)
        # the loop keeps scheduling while the first call is still running
        assert _wait_for(lambda: engine.ticks >= 2)
        assert not finished
    finally:
        engine.stop()
        release.set()
    assert engine.wait_idle(2.0)
    assert finished
    assert engine.timeouts >= 1


def test_stop_wakes_the_sleep_between_ticks():
    engine = TickEngine(lambda: None, interval=10.0, timeout=0.5)
    engine.start()
    assert _wait_for(lambda: engine.ticks == 1)
    t0 = time.monotonic()
    engine.stop()
    assert time.monotonic() - t0 < 1.0
    assert not engine.running


def test_shared_stop_token_stops_every_engine():
    token = StopToken()
    a = TickEngine(lambda: None, interval=10.0, timeout=0.5, stop_token=token, name="a")
    b = TickEngine(lambda: None, interval=10.0, timeout=0.5, stop_token=token, name="b")
    a.start()
    b.start()
    assert _wait_for(lambda: a.ticks >= 1 and b.ticks >= 1)
    t0 = time.monotonic()
    token.stop()
    a.join(2.0)
    b.join(2.0)
    assert time.monotonic() - t0 < 1.0
    assert not a.running and not b.running


def test_engines_with_separate_tokens_are_independent():
    a = TickEngine(lambda: None, interval=0.01, timeout=0.5, stop_token=StopToken())
    b = TickEngine(lambda: None, interval=0.01, timeout=0.5, stop_token=StopToken())
    a.start()
    b.start()
    try:
        a.stop_token.stop()
        a.join(2.0)
        assert not a.running
        ticks = b.ticks
        assert _wait_for(lambda: b.ticks > ticks + 2)
    finally:
        b.stop()


def test_run_returns_immediately_when_token_already_stopped():
    token = StopToken()
    token.stop()
    engine = TickEngine(lambda: None, interval=0.01, timeout=0.5, stop_token=token)
    engine.run()
    assert engine.ticks == 0


def test_blocking_mode_runs_on_caller_thread_until_stopped():
    engine = None
    calls = []

    def work():
        calls.append(threading.current_thread().name)
        if len(calls) == 3:
            engine.stop()

    engine = TickEngine(work, interval=0.01, timeout=0.5)
    t0 = time.monotonic()
    engine.run()
    assert time.monotonic() - t0 < 2.0
    assert len(calls) == 3
    assert all(name.endswith("-work") for name in calls)


def test_start_delay_postpones_first_tick():
    with TickEngine(lambda: None, interval=0.01, timeout=0.5, start_delay=0.3) as engine:
        engine.start()
        time.sleep(0.1)
        assert engine.ticks == 0
        assert _wait_for(lambda: engine.ticks >= 1)
    assert not engine.running


def test_invalid_interval_or_timeout_rejected():
    with pytest.raises(ValueError):
        TickEngine(lambda: None, interval=0, timeout=1)
    with pytest.raises(ValueError):
        TickEngine(lambda: None, interval=1, timeout=0)


def test_subscribe_after_stop_calls_back_immediately():
    token = StopToken()
    token.stop()
    hits = []
    token.subscribe(lambda: hits.append(1))
    assert hits == [1]
    assert token.wait(0.01)
