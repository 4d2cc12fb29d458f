from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, jsonify, request

from .broadcast import BroadcastHub
from .config import Settings
from .engine import AggregationEngine
from .exceptions import ThrottleError
from .models import SubmissionRequest, is_coordinate
from .palette import Palette
from .store import describe
from .throttle import ThrottleController

logger = logging.getLogger(__name__)


def _query_location() -> tuple[float | None, float | None]:
    lat = request.args.get("lat", type=float)
    long = request.args.get("long", type=float)
    if not is_coordinate(lat, 90) or not is_coordinate(long, 180):
        return None, None
    return lat, long


def _query_radius(default: float) -> float:
    radius = request.args.get("radius", type=float)
    if radius is None or not radius >= 0 or radius == float("inf"):
        return default
    return radius


def build_api_blueprint(
    settings: Settings,
    palette: Palette,
    engine: AggregationEngine,
    throttle: ThrottleController,
    hub: BroadcastHub,
) -> Blueprint:
    api = Blueprint("api", __name__, url_prefix="/api")

    @api.get("/health")
    def health() -> Any:
        return jsonify(
            {
                "status": "ok",
                "service": settings.app_name,
                "store": describe(engine.store),
                "connections": len(hub),
                "palette_size": len(palette),
            }
        )

    @api.get("/palette")
    def list_palette() -> Any:
        return jsonify(palette.to_dict())

    @api.get("/color")
    def get_color() -> Any:
        lat, long = _query_location()
        snapshot = engine.snapshot(lat, long, _query_radius(settings.proximity_radius_km))
        return jsonify(snapshot.to_dict())

    @api.put("/color")
    def put_color() -> Any:
        submission = SubmissionRequest.from_payload(request.get_json(silent=True))
        engine.validate(submission.submitter_id, submission.color, submission.lat, submission.long)

        allowed, remaining = throttle.check_and_record(submission.submitter_id)
        if not allowed:
            logger.info("Throttled submission from %s (%ss left)", submission.submitter_id, remaining)
            raise ThrottleError(remaining)

        engine.set(submission)
        return jsonify({"success": True})

    return api
