from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from collections.abc import Callable

from .engine import AggregationEngine
from .exceptions import AppError
from .models import SYNTHETIC_PREFIX, Submission, SubmissionRequest
from .throttle import ThrottleController

logger = logging.getLogger(__name__)


class IdleWatcher:
    """Injects a synthetic submission once nobody has submitted for a while."""

    def __init__(
        self,
        engine: AggregationEngine,
        idle_threshold_seconds: float = 90.0,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._engine = engine
        self.idle_threshold_seconds = idle_threshold_seconds
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._last_activity_at = clock()
        engine.subscribe(self._on_commit)

    @property
    def last_activity_at(self) -> float:
        with self._lock:
            return self._last_activity_at

    def _on_commit(self, submission: Submission) -> None:
        if not submission.is_synthetic:
            self.record_activity(submission.timestamp / 1000)

    def record_activity(self, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        with self._lock:
            self._last_activity_at = max(self._last_activity_at, now)

    def synthesize(self) -> SubmissionRequest:
        return SubmissionRequest(
            submitter_id=f"{SYNTHETIC_PREFIX}{uuid.uuid4().hex[:12]}",
            color=self._engine.palette.random_hex(self._rng),
            lat=self._rng.uniform(-90.0, 90.0),
            long=self._rng.uniform(-180.0, 180.0),
            synthetic=True,
        )

    def tick(self, now: float | None = None) -> SubmissionRequest | None:
        """Run one idle check; returns the injected request, if any."""
        now = self._clock() if now is None else now
        with self._lock:
            if now - self._last_activity_at < self.idle_threshold_seconds:
                return None
            self._last_activity_at = now

        request = self.synthesize()
        logger.info("No activity for %.0fs; injecting %s", self.idle_threshold_seconds, request.color)
        try:
            self._engine.set(request)
        except AppError as exc:
            logger.warning("Idle injection failed: %s", exc.message)
        return request

    def reset(self, now: float | None = None) -> None:
        with self._lock:
            self._last_activity_at = self._clock() if now is None else now


class BackgroundTimers:
    """Daemon threads for the idle tick and the throttle sweep."""

    def __init__(
        self,
        watcher: IdleWatcher,
        throttle: ThrottleController,
        idle_tick_seconds: float = 10.0,
        sweep_seconds: float = 300.0,
    ) -> None:
        self._jobs = [
            ("idle-watcher", idle_tick_seconds, watcher.tick),
            ("throttle-sweep", sweep_seconds, throttle.sweep),
        ]
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._loop, args=(interval, job), name=name, daemon=True)
            for name, interval, job in self._jobs
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Background timers started: %s", ", ".join(t.name for t in self._threads))

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Background timers stopped")

    def _loop(self, interval: float, job: Callable[[], object]) -> None:
        while not self._stop.wait(interval):
            try:
                job()
            except Exception as exc:
                logger.error("Background job %s failed: %s", threading.current_thread().name, exc)
