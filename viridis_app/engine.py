from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np

from .broadcast import BroadcastHub
from .exceptions import StoreError, ValidationError
from .geo import distance_km
from .models import StateSnapshot, Submission, SubmissionRequest, is_coordinate
from .palette import Palette, hex_to_rgb, normalize_hex
from .store import SubmissionStore

logger = logging.getLogger(__name__)
_COLOR_PATTERN = re.compile(r"#[0-9A-Fa-f]{6}")

CommitListener = Callable[[Submission], None]


def _round_channels(values: np.ndarray) -> list[int]:
    # half-up rounding, then clamp each channel to a byte
    rounded = np.clip(np.floor(values + 0.5), 0, 255)
    return [int(v) for v in rounded]


class AggregationEngine:
    """Validates submissions, persists them and derives the shared colors.

    The engine is the only writer of the submission store. Reads never raise
    store failures: they degrade to a random palette color (or to the global
    average for proximity queries) so viewers always get an answer.
    """

    def __init__(
        self,
        palette: Palette,
        store: SubmissionStore,
        hub: BroadcastHub | None = None,
        *,
        window_size: int = 8,
        retention_ms: int = 24 * 60 * 60 * 1000,
        radius_km: float = 50.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.palette = palette
        self.store = store
        self.hub = hub
        self.window_size = window_size
        self.retention_ms = retention_ms
        self.radius_km = radius_km
        self._clock = clock
        self._listeners: list[CommitListener] = []
        self._last_timestamp = 0
        self._timestamp_lock = threading.Lock()

    def subscribe(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _next_timestamp(self) -> int:
        with self._timestamp_lock:
            self._last_timestamp = max(self._last_timestamp, self.now_ms())
            return self._last_timestamp

    # validation

    def validate(self, submitter_id: Any, color: Any, lat: Any, long: Any) -> str:
        """Return the normalized color, or raise ValidationError."""
        if not isinstance(color, str) or not _COLOR_PATTERN.fullmatch(color):
            raise ValidationError("Invalid color format. Expected #RRGGBB")
        if not self.palette.is_member(color):
            raise ValidationError(f"Color {color} is not in the palette")
        if not isinstance(submitter_id, str) or not submitter_id:
            raise ValidationError("id must be a non-empty string")
        if not is_coordinate(lat, 90):
            raise ValidationError("Invalid latitude. Must be between -90 and 90")
        if not is_coordinate(long, 180):
            raise ValidationError("Invalid longitude. Must be between -180 and 180")
        return normalize_hex(color)

    def is_valid(self, submitter_id: Any, color: Any, lat: Any, long: Any) -> bool:
        try:
            self.validate(submitter_id, color, lat, long)
        except ValidationError:
            return False
        return True

    # averages

    def _window(self) -> list[Submission]:
        submissions = self.store.recent_submissions(self.retention_ms)
        return list(submissions[-self.window_size :])

    def _mean_color(self, submissions: Sequence[Submission], weights: Sequence[float] | None = None) -> str:
        channels = np.array([hex_to_rgb(s.color) for s in submissions], dtype=np.float64)
        if weights is None:
            mean = channels.mean(axis=0)
        else:
            w = np.asarray(weights, dtype=np.float64)
            mean = (channels * w[:, None]).sum(axis=0) / w.sum()
        return self.palette.nearest(_round_channels(mean))

    def _global_average(self, window: Sequence[Submission]) -> str:
        if not window:
            return self.palette.random_hex()
        return self._mean_color(window)

    def _proximity_average(
        self,
        window: Sequence[Submission],
        lat: float,
        long: float,
        radius_km: float,
        fallback: str | None = None,
    ) -> str:
        nearby = []
        weights = []
        for submission in window:
            distance = distance_km(lat, long, submission.lat, submission.long)
            if distance <= radius_km:
                nearby.append(submission)
                weights.append(1.0 / (1.0 + distance**2))

        if not nearby or sum(weights) == 0:
            return fallback if fallback is not None else self._global_average(window)
        return self._mean_color(nearby, weights)

    def global_average(self) -> str:
        try:
            window = self._window()
        except StoreError as exc:
            logger.warning("Average unavailable, serving random color: %s", exc.message)
            return self.palette.random_hex()
        return self._global_average(window)

    def proximity_average(self, lat: float, long: float, radius_km: float | None = None) -> str:
        radius = self.radius_km if radius_km is None else radius_km
        try:
            window = self._window()
        except StoreError as exc:
            logger.warning("Proximity average unavailable, serving global average: %s", exc.message)
            return self.global_average()
        return self._proximity_average(window, lat, long, radius)

    def nearby_count(self, lat: float, long: float, radius_km: float | None = None) -> int:
        """Count submissions within the radius across the whole 24h retention window.

        Not limited to the averaging window used for the colour averages.
        """
        radius = self.radius_km if radius_km is None else radius_km
        try:
            submissions = self.store.recent_submissions(self.retention_ms)
        except StoreError as exc:
            logger.warning("Nearby count unavailable: %s", exc.message)
            return 0
        return sum(1 for s in submissions if distance_km(lat, long, s.lat, s.long) <= radius)

    def current_color(self) -> str:
        try:
            color = self.store.get_current_color()
        except StoreError as exc:
            logger.warning("Current color unavailable, serving random color: %s", exc.message)
            color = None
        return color or self.palette.random_hex()

    def snapshot(self, lat: float | None = None, long: float | None = None, radius_km: float | None = None) -> StateSnapshot:
        color = self.current_color()
        try:
            all_recent = self.store.recent_submissions(self.retention_ms)
        except StoreError as exc:
            logger.warning("Submissions unavailable, serving fallback colors: %s", exc.message)
            all_recent = None

        if all_recent is None:
            average = self.palette.random_hex()
            if lat is None or long is None:
                return StateSnapshot(color=color, average=average)
            return StateSnapshot(color=color, average=average, proximity_average=average, nearby_count=0)

        window = all_recent[-self.window_size :]
        average = self._global_average(window)
        if lat is None or long is None:
            return StateSnapshot(color=color, average=average)

        radius = self.radius_km if radius_km is None else radius_km
        proximity = self._proximity_average(window, lat, long, radius, fallback=average)
        count = sum(1 for s in all_recent if distance_km(lat, long, s.lat, s.long) <= radius)
        return StateSnapshot(color=color, average=average, proximity_average=proximity, nearby_count=count)

    # commit path

    def set(self, request: SubmissionRequest) -> StateSnapshot:
        """Validate, persist and broadcast one submission.

        Raises ValidationError before any store call, and StoreError if
        persistence fails; in the latter case nothing is broadcast.
        """
        normalized = self.validate(request.submitter_id, request.color, request.lat, request.long)
        submission = Submission(
            submitter_id=request.submitter_id,
            lat=float(request.lat),
            long=float(request.long),
            color=normalized,
            timestamp=self._next_timestamp(),
            synthetic=request.synthetic,
        )

        try:
            self.store.set_current_color(submission.color)
            self.store.record_submission(submission)
            self.store.purge_older_than(submission.timestamp - self.retention_ms)
        except StoreError:
            logger.exception("Failed to persist submission from %s", request.submitter_id)
            raise

        for listener in list(self._listeners):
            listener(submission)

        state = self.snapshot(submission.lat, submission.long)
        if self.hub is not None:
            delivered = self.hub.broadcast(state)
            logger.debug("Broadcast %s to %s viewers", state.color, delivered)
        return state
