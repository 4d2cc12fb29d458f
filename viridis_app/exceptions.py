from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base application exception with status metadata."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def payload(self) -> dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ThrottleError(AppError):
    def __init__(self, remaining_time: int, message: str | None = None):
        super().__init__(
            message or f"Too many submissions. Try again in {remaining_time}s",
            status_code=429,
        )
        self.remaining_time = remaining_time

    def payload(self) -> dict[str, Any]:
        body = super().payload()
        body["remainingTime"] = self.remaining_time
        return body


class StoreError(AppError):
    def __init__(self, message: str = "Color store unavailable"):
        super().__init__(message, status_code=500)


class BroadcastError(AppError):
    """Fan-out failure on a single connection; logged, never returned to a client."""

    def __init__(self, message: str = "Broadcast failed"):
        super().__init__(message, status_code=500)
