from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ThrottleController:
    """Per-submitter cooldown between accepted submissions.

    ``check_and_record`` reads and writes the record under one lock, so two
    concurrent requests for the same id cannot both be allowed.
    """

    def __init__(self, cooldown_seconds: float = 12.0, clock: Callable[[], float] = time.time) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_submit_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_submit_at)

    def check_and_record(self, submitter_id: str, now: float | None = None) -> tuple[bool, int]:
        now = self._clock() if now is None else now
        with self._lock:
            last = self._last_submit_at.get(submitter_id)
            if last is not None:
                elapsed = now - last
                if elapsed < self.cooldown_seconds:
                    return False, max(1, math.ceil(self.cooldown_seconds - elapsed))
            self._last_submit_at[submitter_id] = now
            return True, 0

    def sweep(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        max_age = self.cooldown_seconds * 2
        with self._lock:
            stale = [key for key, last in self._last_submit_at.items() if now - last > max_age]
            for key in stale:
                del self._last_submit_at[key]
        if stale:
            logger.debug("Evicted %s stale throttle records", len(stale))
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._last_submit_at.clear()
