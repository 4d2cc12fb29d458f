from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from .api import build_api_blueprint
from .broadcast import BroadcastHub
from .config import Settings
from .engine import AggregationEngine
from .exceptions import AppError, StoreError, ThrottleError
from .idle import BackgroundTimers, IdleWatcher
from .palette import Palette
from .realtime import register_socket_handlers
from .security import assign_request_id, attach_security_headers
from .store import SubmissionStore, build_store
from .throttle import ThrottleController


def create_app(
    settings: Settings | None = None,
    *,
    store: SubmissionStore | None = None,
    clock: Callable[[], float] = time.time,
) -> Flask:
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    logger = logging.getLogger(__name__)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_request_bytes

    CORS(
        app,
        resources={r"/api/*": {"origins": settings.allowed_origins}},
        supports_credentials=False,
    )
    socketio = SocketIO(app, cors_allowed_origins=settings.allowed_origins, async_mode="threading")

    palette = Palette.from_file(settings.palette_path)
    store = store or build_store(settings, clock=clock)
    hub = BroadcastHub()
    engine = AggregationEngine(
        palette,
        store,
        hub,
        window_size=settings.average_window_size,
        retention_ms=settings.retention_ms,
        radius_km=settings.proximity_radius_km,
        clock=clock,
    )
    throttle = ThrottleController(settings.throttle_cooldown_seconds, clock=clock)
    watcher = IdleWatcher(engine, settings.idle_threshold_seconds, clock=clock)
    timers = BackgroundTimers(
        watcher,
        throttle,
        idle_tick_seconds=settings.idle_tick_seconds,
        sweep_seconds=settings.throttle_sweep_seconds,
    )

    app.extensions["settings"] = settings
    app.extensions["palette"] = palette
    app.extensions["engine"] = engine
    app.extensions["hub"] = hub
    app.extensions["throttle"] = throttle
    app.extensions["idle_watcher"] = watcher
    app.extensions["timers"] = timers

    app.register_blueprint(build_api_blueprint(settings, palette, engine, throttle, hub))
    register_socket_handlers(socketio, engine, hub)

    @app.errorhandler(ThrottleError)
    def handle_throttle_error(error: ThrottleError):
        response = jsonify(error.payload())
        response.headers["Retry-After"] = str(error.remaining_time)
        return response, error.status_code

    @app.errorhandler(StoreError)
    def handle_store_error(error: StoreError):
        logger.error("Store failure: %s", error.message)
        return jsonify({"success": False, "message": "Failed to store color"}), error.status_code

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        return jsonify(error.payload()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"success": False, "message": error.description or error.name}), error.code

    @app.errorhandler(404)
    def not_found(_: Any):
        return jsonify({"success": False, "message": "Not found"}), 404

    @app.errorhandler(Exception)
    def unhandled_error(error: Exception):
        logger.exception("Unhandled error: %s", error)
        return jsonify({"success": False, "message": "Internal server error"}), 500

    @app.before_request
    def request_id():
        assign_request_id()

    @app.after_request
    def security_headers(response):
        return attach_security_headers(response)

    if settings.background_tasks_enabled:
        timers.start()

    logger.info(
        "App initialized | palette=%s | store=%s | cooldown=%ss | idle=%ss",
        len(palette),
        store.name,
        settings.throttle_cooldown_seconds,
        settings.idle_threshold_seconds,
    )

    return app
