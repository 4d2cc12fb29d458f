from __future__ import annotations

import bisect
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import redis

from .config import Settings
from .exceptions import StoreError
from .models import Submission
from .retry import retry

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def _now_ms(clock: Clock) -> int:
    return int(clock() * 1000)


class SubmissionStore(ABC):
    """Persistence the aggregation engine reads and writes.

    Implementations raise :class:`StoreError` for any backend failure.
    """

    name: str

    @abstractmethod
    def set_current_color(self, color: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_current_color(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def record_submission(self, submission: Submission) -> None:
        raise NotImplementedError

    @abstractmethod
    def recent_submissions(self, window_ms: int) -> list[Submission]:
        raise NotImplementedError

    @abstractmethod
    def purge_older_than(self, cutoff_ms: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_submitter(self, submitter_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class MemorySubmissionStore(SubmissionStore):
    def __init__(self, clock: Clock = time.time) -> None:
        self.name = "memory"
        self._clock = clock
        self._current: str | None = None
        self._log: list[Submission] = []
        self._submitters: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def set_current_color(self, color: str) -> None:
        with self._lock:
            self._current = color

    def get_current_color(self) -> str | None:
        with self._lock:
            return self._current

    def record_submission(self, submission: Submission) -> None:
        with self._lock:
            bisect.insort(self._log, submission, key=lambda item: item.timestamp)
            self._submitters[submission.submitter_id] = submission.to_dict()

    def recent_submissions(self, window_ms: int) -> list[Submission]:
        since = _now_ms(self._clock) - window_ms
        with self._lock:
            start = bisect.bisect_left(self._log, since, key=lambda item: item.timestamp)
            return self._log[start:]

    def purge_older_than(self, cutoff_ms: int) -> int:
        with self._lock:
            index = bisect.bisect_left(self._log, cutoff_ms, key=lambda item: item.timestamp)
            del self._log[:index]
            return index

    def get_submitter(self, submitter_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._submitters.get(submitter_id)
            return dict(record) if record is not None else None


class RedisSubmissionStore(SubmissionStore):
    """Redis layout: a current-color string, a sorted-set log scored by
    timestamp, and one hash per submitter holding their last location."""

    def __init__(self, client: Any, key_prefix: str = "viridis", clock: Clock = time.time,
                 retention_ms: int = 24 * 60 * 60 * 1000) -> None:
        self.name = "redis"
        self._client = client
        self._clock = clock
        self._retention_ms = retention_ms
        self._current_key = f"{key_prefix}:current"
        self._log_key = f"{key_prefix}:submissions"
        self._submitter_prefix = f"{key_prefix}:submitter:"

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "viridis", clock: Clock = time.time,
                 retention_ms: int = 24 * 60 * 60 * 1000) -> "RedisSubmissionStore":
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        return cls(client, key_prefix=key_prefix, clock=clock, retention_ms=retention_ms)

    @retry(attempts=2, initial_delay=0.05, retry_on=(redis.RedisError,))
    def _ping(self) -> None:
        self._client.ping()

    def ping(self) -> bool:
        try:
            self._ping()
        except redis.RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False
        return True

    def set_current_color(self, color: str) -> None:
        try:
            self._client.set(self._current_key, color)
        except redis.RedisError as exc:
            raise StoreError(f"Failed to store current color: {exc}") from exc

    def get_current_color(self) -> str | None:
        try:
            value = self._client.get(self._current_key)
        except redis.RedisError as exc:
            raise StoreError(f"Failed to read current color: {exc}") from exc
        return value or None

    def record_submission(self, submission: Submission) -> None:
        submitter_key = f"{self._submitter_prefix}{submission.submitter_id}"
        try:
            pipe = self._client.pipeline()
            pipe.zadd(self._log_key, {submission.to_json(): submission.timestamp})
            pipe.hset(
                submitter_key,
                mapping={
                    "lat": submission.lat,
                    "long": submission.long,
                    "color": submission.color,
                    "timestamp": submission.timestamp,
                },
            )
            pipe.pexpire(submitter_key, self._retention_ms)
            pipe.execute()
        except redis.RedisError as exc:
            raise StoreError(f"Failed to record submission: {exc}") from exc

    @retry(attempts=2, initial_delay=0.05, retry_on=(redis.RedisError,))
    def _range(self, since_ms: int) -> list[str]:
        return self._client.zrangebyscore(self._log_key, since_ms, "+inf")

    def recent_submissions(self, window_ms: int) -> list[Submission]:
        since = _now_ms(self._clock) - window_ms
        try:
            members = self._range(since)
        except redis.RedisError as exc:
            raise StoreError(f"Failed to read submissions: {exc}") from exc

        submissions = []
        for raw in members:
            try:
                submissions.append(Submission.from_json(raw))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping malformed submission record: %s", exc)
        return submissions

    def purge_older_than(self, cutoff_ms: int) -> int:
        try:
            # "(" makes the bound exclusive: only strictly older entries go
            return int(self._client.zremrangebyscore(self._log_key, "-inf", f"({cutoff_ms}"))
        except redis.RedisError as exc:
            raise StoreError(f"Failed to purge submissions: {exc}") from exc

    def get_submitter(self, submitter_id: str) -> dict[str, Any] | None:
        try:
            record = self._client.hgetall(f"{self._submitter_prefix}{submitter_id}")
        except redis.RedisError as exc:
            raise StoreError(f"Failed to read submitter: {exc}") from exc
        if not record:
            return None
        return {
            "id": submitter_id,
            "lat": float(record["lat"]),
            "long": float(record["long"]),
            "color": record["color"],
            "timestamp": int(record["timestamp"]),
        }


def build_store(settings: Settings, clock: Clock = time.time) -> SubmissionStore:
    url = settings.redis_url
    if not url or url.startswith("memory://"):
        logger.info("Redis not configured; using in-memory submission store")
        return MemorySubmissionStore(clock=clock)

    try:
        store = RedisSubmissionStore.from_url(
            url,
            key_prefix=settings.redis_key_prefix,
            clock=clock,
            retention_ms=settings.retention_ms,
        )
        store._ping()
        logger.info("Redis submission store enabled: %s", url)
        return store
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Redis unavailable, falling back to in-memory store: %s", exc)
        return MemorySubmissionStore(clock=clock)


def describe(store: SubmissionStore) -> dict[str, Any]:
    return {"backend": store.name, "available": store.ping()}
