from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from functools import wraps
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(
    attempts: int = 3,
    initial_delay: float = 0.05,
    backoff: float = 2.0,
    max_delay: float = 0.5,
    jitter: float = 0.05,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry a store call with exponential backoff and jitter.

    The last error is re-raised once ``attempts`` is exhausted so callers can
    translate it into their own error type.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as exc:  # type: ignore[misc]
                    if attempt >= attempts:
                        raise
                    logger.debug(
                        "%s failed (attempt %s/%s): %s", func.__qualname__, attempt, attempts, exc
                    )
                    time.sleep(min(max_delay, delay) + random.uniform(0, jitter))
                    delay *= backoff
            raise RuntimeError("retry loop exited unexpectedly")

        return wrapper

    return decorator
