from __future__ import annotations

from pathlib import Path
import sys

import pytest

root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from viridis_app.broadcast import BroadcastHub
from viridis_app.engine import AggregationEngine
from viridis_app.palette import Palette
from viridis_app.store import MemorySubmissionStore

PALETTE_PATH = root / "viridis_app" / "data" / "palette.json"
START = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingConnection:
    def __init__(self, is_open: bool = True, fail: bool = False) -> None:
        self.is_open = is_open
        self.fail = fail
        self.messages: list[str] = []

    def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed by peer")
        self.messages.append(message)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def palette():
    return Palette.from_file(PALETTE_PATH)


@pytest.fixture()
def store(clock):
    return MemorySubmissionStore(clock=clock)


@pytest.fixture()
def hub():
    return BroadcastHub()


@pytest.fixture()
def engine(palette, store, hub, clock):
    return AggregationEngine(palette, store, hub, clock=clock)


@pytest.fixture()
def app(monkeypatch, store, clock):
    monkeypatch.setenv("REDIS_URL", "memory://")
    monkeypatch.setenv("BACKGROUND_TASKS_ENABLED", "false")
    monkeypatch.setenv("PALETTE_PATH", str(PALETTE_PATH))
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:5000")

    from viridis_app import create_app

    flask_app = create_app(store=store, clock=clock)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def socketio(app):
    return app.extensions["socketio"]
