"""Fixed-interval execution of a unit of work.

`TickEngine` calls a function once per interval. Each call runs on its own
thread; the loop waits for it up to `timeout` seconds and then fires
`on_timeout()` without cancelling it. The late call keeps running in the
background and the next tick is scheduled from the wall-clock cadence, so
calls may overlap when the work regularly takes longer than the interval.
Callers that cannot tolerate overlap must guard their own work.

Stopping is cooperative. Every engine has its own stop request and may share
a `StopToken` with other engines; either one ends the loop and wakes the
sleep between ticks immediately.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from loguru import logger


class StopToken:
    """Cancellation shared by every engine constructed with it."""

    def __init__(self) -> None:
        self._stopped = threading.Event()
        # Re-entrant: stop() may run from a signal handler on a thread that holds it.
        self._lock = threading.RLock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        with self._lock:
            self._stopped.set()
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb()

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call `callback` on stop (immediately if already stopped). Returns an unsubscribe function."""
        with self._lock:
            if not self._stopped.is_set():
                self._callbacks.append(callback)

                def _unsubscribe() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unsubscribe
        callback()
        return lambda: None

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)


class TickEngine:
    def __init__(
        self,
        work: Callable[[], None],
        interval: float,
        timeout: float,
        start_delay: float = 0.0,
        *,
        stop_token: Optional[StopToken] = None,
        on_timeout: Optional[Callable[[], None]] = None,
        name: str = "tick-engine",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._work = work
        self.interval = float(interval)
        self.timeout = float(timeout)
        self.start_delay = max(float(start_delay), 0.0)
        self.stop_token = stop_token or StopToken()
        self._on_timeout = on_timeout
        self.name = name

        self._stop_requested = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._invocations: List[threading.Thread] = []
        self._lock = threading.Lock()

        self.ticks = 0
        self.failures = 0
        self.timeouts = 0

    # ------------------------------------------------------------------ state

    @property
    def stopping(self) -> bool:
        return self._stop_requested.is_set() or self.stop_token.stopped

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------- lifecycle

    def run(self) -> None:
        """Run the loop on the calling thread until stopped."""
        unsubscribe = self.stop_token.subscribe(self._wake.set)
        try:
            if self.start_delay > 0 and self._sleep_until(time.monotonic() + self.start_delay):
                return
            next_tick = time.monotonic()
            while not self.stopping:
                self._tick()
                if self.stopping:
                    break
                next_tick += self.interval
                if self._sleep_until(next_tick):
                    break
        finally:
            unsubscribe()
            logger.debug(f"[{self.name}] loop exited after {self.ticks} ticks")

    def start(self) -> None:
        """Run the loop on a dedicated background thread."""
        if self.running:
            raise RuntimeError(f"{self.name} is already running")
        self._stop_requested.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self.run, name=self.name)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Request stop, wake the loop and join its thread (unless called from it)."""
        self._stop_requested.set()
        self._wake.set()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for invocations still running in the background. True when none are left."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            pending = list(self._invocations)
        for t in pending:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            t.join(remaining)
        with self._lock:
            self._invocations = [t for t in self._invocations if t.is_alive()]
            return not self._invocations

    def __enter__(self) -> "TickEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------ hooks

    def on_timeout(self) -> None:
        """Called when an invocation outlives `timeout`. The invocation is not cancelled."""
        if self._on_timeout is not None:
            self._on_timeout()

    # --------------------------------------------------------------- internal

    def _sleep_until(self, deadline: float) -> bool:
        """Sleep until `deadline` (monotonic). Returns True if woken by a stop."""
        while not self.stopping:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._wake.wait(remaining)
            if self._wake.is_set() and not self.stopping:
                self._wake.clear()
        return True

    def _invoke(self) -> None:
        try:
            self._work()
        except Exception:
            with self._lock:
                self.failures += 1
            logger.exception(f"[{self.name}] tick failed")

    def _tick(self) -> None:
        # Non-daemon: an invocation that outlives the loop still finishes before interpreter exit.
        t = threading.Thread(target=self._invoke, name=f"{self.name}-work")
        with self._lock:
            self.ticks += 1
            self._invocations = [x for x in self._invocations if x.is_alive()]
            self._invocations.append(t)
        t.start()
        t.join(self.timeout)
        if t.is_alive():
            with self._lock:
                self.timeouts += 1
            logger.warning(f"[{self.name}] tick exceeded timeout of {self.timeout:.3f}s; left running")
            try:
                self.on_timeout()
            except Exception:
                logger.exception(f"[{self.name}] on_timeout hook failed")
