"""Entrypoint for the Viridis color service (HTTP API plus Socket.IO live channel)."""

from __future__ import annotations

import os

from viridis_app import create_app

app = create_app()
socketio = app.extensions["socketio"]


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    socketio.run(app, host="0.0.0.0", port=port, debug=False, allow_unsafe_werkzeug=True)


__all__ = ["app", "create_app", "socketio"]
