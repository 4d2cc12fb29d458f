from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from .exceptions import ValidationError

SYNTHETIC_PREFIX = "synthetic-"


def is_coordinate(value: Any, limit: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        number = float(value)
    except OverflowError:
        return False
    return math.isfinite(number) and -limit <= number <= limit


@dataclass(frozen=True, slots=True)
class Submission:
    submitter_id: str
    lat: float
    long: float
    color: str
    timestamp: int
    synthetic: bool = False

    @property
    def is_synthetic(self) -> bool:
        return self.synthetic

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.submitter_id,
            "lat": self.lat,
            "long": self.long,
            "color": self.color,
            "timestamp": self.timestamp,
            "synthetic": self.synthetic,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Submission":
        return cls(
            submitter_id=str(data["id"]),
            lat=float(data["lat"]),
            long=float(data["long"]),
            color=str(data["color"]),
            timestamp=int(data["timestamp"]),
            synthetic=bool(data.get("synthetic", False)),
        )

    @classmethod
    def from_json(cls, raw: str) -> "Submission":
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True, slots=True)
class SubmissionRequest:
    """Typed PUT body. Shape is checked here; palette membership is left to the engine."""

    submitter_id: str
    color: str
    lat: float
    long: float
    # Only the idle watcher sets this; client payloads always arrive as real activity.
    synthetic: bool = False

    @classmethod
    def from_payload(cls, body: Any) -> "SubmissionRequest":
        if not isinstance(body, dict):
            raise ValidationError("No data or invalid payload in body")

        problems = []
        submitter_id = body.get("id")
        if not isinstance(submitter_id, str) or not submitter_id:
            problems.append("id must be a non-empty string")

        color = body.get("color")
        if not isinstance(color, str) or not color:
            problems.append("color is required")

        lat = body.get("lat")
        if not is_coordinate(lat, 90):
            problems.append("lat must be a number between -90 and 90")

        long = body.get("long")
        if not is_coordinate(long, 180):
            problems.append("long must be a number between -180 and 180")

        if problems:
            raise ValidationError("; ".join(problems))

        return cls(submitter_id=submitter_id, color=color, lat=float(lat), long=float(long))


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    color: str
    average: str
    proximity_average: str | None = None
    nearby_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"color": self.color, "average": self.average}
        if self.proximity_average is not None:
            payload["proximityAverage"] = self.proximity_average
            payload["nearbyCount"] = self.nearby_count or 0
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))
