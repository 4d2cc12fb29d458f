from __future__ import annotations

from flask import request
from flask_socketio import SocketIO

from .broadcast import BroadcastHub, SocketIOConnection
from .engine import AggregationEngine


def register_socket_handlers(socketio: SocketIO, engine: AggregationEngine, hub: BroadcastHub) -> None:
    def current_connection() -> SocketIOConnection:
        return SocketIOConnection(socketio, request.sid)

    @socketio.on("connect")
    def on_connect(auth=None):
        hub.register(current_connection())

    @socketio.on("message")
    def on_message(data=None):
        # any inbound message is a request for the current state
        hub.send_to(current_connection(), engine.snapshot())

    @socketio.on("disconnect")
    def on_disconnect(reason=None):
        hub.unregister(current_connection())
