from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from .exceptions import BroadcastError
from .models import StateSnapshot

logger = logging.getLogger(__name__)


class Connection(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send(self, message: str) -> None: ...


class SocketIOConnection:
    """A Flask-SocketIO session addressed by its sid."""

    def __init__(self, socketio: Any, sid: str, namespace: str = "/") -> None:
        self._socketio = socketio
        self.sid = sid
        self.namespace = namespace

    @property
    def is_open(self) -> bool:
        return bool(self._socketio.server.manager.is_connected(self.sid, self.namespace))

    def send(self, message: str) -> None:
        self._socketio.send(message, to=self.sid, namespace=self.namespace)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SocketIOConnection):
            return NotImplemented
        return (self.sid, self.namespace) == (other.sid, other.namespace)

    def __hash__(self) -> int:
        return hash((self.sid, self.namespace))

    def __repr__(self) -> str:
        return f"SocketIOConnection(sid={self.sid!r})"


class BroadcastHub:
    def __init__(self) -> None:
        self._connections: set[Connection] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def register(self, connection: Connection) -> None:
        with self._lock:
            self._connections.add(connection)
        logger.info("Viewer connected (%s live)", len(self))

    def unregister(self, connection: Connection) -> bool:
        with self._lock:
            present = connection in self._connections
            self._connections.discard(connection)
        if present:
            logger.info("Viewer disconnected (%s live)", len(self))
        return present

    def broadcast(self, snapshot: StateSnapshot) -> int:
        message = snapshot.to_json()
        with self._lock:
            targets = list(self._connections)

        delivered = 0
        for connection in targets:
            if not connection.is_open:
                continue
            try:
                self._deliver(connection, message)
                delivered += 1
            except BroadcastError as exc:
                logger.warning("%s", exc.message)
        return delivered

    def send_to(self, connection: Connection, snapshot: StateSnapshot) -> bool:
        if not connection.is_open:
            return False
        try:
            self._deliver(connection, snapshot.to_json())
        except BroadcastError as exc:
            logger.warning("%s", exc.message)
            return False
        return True

    @staticmethod
    def _deliver(connection: Connection, message: str) -> None:
        try:
            connection.send(message)
        except Exception as exc:
            raise BroadcastError(f"Broadcast to {connection!r} failed: {exc}") from exc

    def reset(self) -> None:
        with self._lock:
            self._connections.clear()
