from __future__ import annotations

import json
import re

import pytest

from viridis_app.engine import AggregationEngine
from viridis_app.exceptions import StoreError, ValidationError
from viridis_app.models import SubmissionRequest
from viridis_app.store import MemorySubmissionStore

from conftest import RecordingConnection

SF = (37.7749, -122.4194)
OAKLAND = (37.8044, -122.2712)
NYC = (40.7128, -74.0060)
HEX = re.compile(r"^#[0-9A-F]{6}$")


class BrokenStore(MemorySubmissionStore):
    def _fail(self, *args, **kwargs):
        raise StoreError("redis down")

    set_current_color = _fail
    get_current_color = _fail
    record_submission = _fail
    recent_submissions = _fail


def submit(engine, submitter_id, color, location=SF):
    return engine.set(SubmissionRequest(submitter_id=submitter_id, color=color, lat=location[0], long=location[1]))


@pytest.mark.parametrize("color", ["#FF0000", "#ff0000", "#1e90FF", "#CD853F"])
def test_validation_accepts_palette_colors(engine, color):
    assert engine.is_valid("u1", color, 0, 0)


@pytest.mark.parametrize(
    "color",
    ["FF0000", "#FF000", "#FF00000", "#GG0000", "#AABBCC", "", None, 0xFF0000, "#FF 000"],
)
def test_validation_rejects_bad_colors(engine, color):
    assert not engine.is_valid("u1", color, 0, 0)


@pytest.mark.parametrize(
    "submitter_id, lat, long",
    [
        ("", 0, 0),
        (12345, 0, 0),
        (None, 0, 0),
        ("u1", 90.0001, 0),
        ("u1", -91, 0),
        ("u1", 0, 180.5),
        ("u1", float("nan"), 0),
        ("u1", 0, float("inf")),
        ("u1", "37.7", 0),
        ("u1", True, 0),
        ("u1", int("9" * 400), 0),
    ],
)
def test_validation_rejects_bad_identity_or_location(engine, submitter_id, lat, long):
    with pytest.raises(ValidationError):
        engine.validate(submitter_id, "#FF0000", lat, long)


def test_validation_accepts_boundaries(engine):
    for lat, long in [(-90, 0), (90, 0), (0, -180), (0, 180)]:
        assert engine.is_valid("u1", "#FF0000", lat, long)


def test_set_persists_and_normalizes(engine, store):
    submit(engine, "u1", "#ff0000")

    assert store.get_current_color() == "#FF0000"
    recorded = store.recent_submissions(60_000)
    assert len(recorded) == 1
    assert recorded[0].color == "#FF0000"
    assert store.get_submitter("u1")["color"] == "#FF0000"


def test_set_rejects_without_side_effects(engine, store):
    with pytest.raises(ValidationError):
        submit(engine, "u1", "#AABBCC")

    assert store.get_current_color() is None
    assert store.recent_submissions(60_000) == []


def test_timestamps_never_decrease(engine, store, clock):
    submit(engine, "u1", "#FF0000")
    clock.advance(-5)
    submit(engine, "u2", "#0000FF")

    first, second = store.recent_submissions(60_000)
    assert second.timestamp >= first.timestamp


def test_empty_store_average_is_random_palette_color(engine, palette):
    average = engine.global_average()
    assert HEX.match(average)
    assert palette.is_member(average)


def test_average_of_identical_member_is_idempotent(engine):
    for index in range(5):
        submit(engine, f"u{index}", "#1E90FF")
    assert engine.global_average() == "#1E90FF"


def test_average_is_snapped_channel_mean(engine, palette):
    submit(engine, "u1", "#FF0000")
    submit(engine, "u2", "#0000FF")

    assert engine.global_average() == palette.nearest((128, 0, 128))


def test_average_uses_last_eight_submissions(engine):
    submit(engine, "early-1", "#0000FF")
    submit(engine, "early-2", "#0000FF")
    for index in range(8):
        submit(engine, f"late-{index}", "#FF0000")

    assert engine.global_average() == "#FF0000"


def test_expired_submissions_are_ignored(engine, clock):
    submit(engine, "old", "#0000FF")
    clock.advance(24 * 60 * 60 + 1)
    submit(engine, "new", "#00FF00")

    assert engine.global_average() == "#00FF00"


def test_proximity_average_weighted_toward_nearby(engine):
    submit(engine, "u1", "#FF0000", SF)
    submit(engine, "u2", "#0000FF", OAKLAND)

    assert engine.proximity_average(*SF) == "#FF0000"
    assert engine.nearby_count(*SF) == 2


def test_proximity_falls_back_to_global_average(engine):
    submit(engine, "u1", "#00FF00", NYC)

    assert engine.nearby_count(*SF) == 0
    assert engine.proximity_average(*SF) == engine.global_average() == "#00FF00"


def test_nearby_count_spans_retention_window_not_average_window(engine, clock):
    for index in range(10):
        submit(engine, f"u{index}", "#FF0000", SF)
    clock.advance(24 * 60 * 60 - 60)

    assert engine.nearby_count(*SF) == 10
    assert engine.snapshot(*SF).nearby_count == 10

    clock.advance(120)
    assert engine.nearby_count(*SF) == 0


def test_radius_is_inclusive(engine):
    submit(engine, "u1", "#FF0000", (0.0, 0.0))
    distance = 111.19492664455873

    assert engine.nearby_count(0.0, 1.0, radius_km=distance + 1e-6) == 1
    assert engine.nearby_count(0.0, 1.0, radius_km=distance - 0.01) == 0


def test_snapshot_with_location_reports_proximity(engine):
    submit(engine, "u1", "#FF0000", SF)

    snapshot = engine.snapshot(*SF).to_dict()

    assert snapshot["color"] == "#FF0000"
    assert snapshot["average"] == "#FF0000"
    assert snapshot["proximityAverage"] == "#FF0000"
    assert snapshot["nearbyCount"] >= 1


def test_snapshot_without_location_omits_proximity(engine):
    assert set(engine.snapshot().to_dict()) == {"color", "average"}


def test_reads_degrade_when_store_fails(palette, hub, clock):
    engine = AggregationEngine(palette, BrokenStore(clock=clock), hub, clock=clock)

    snapshot = engine.snapshot(*SF)

    assert palette.is_member(snapshot.color)
    assert palette.is_member(snapshot.average)
    assert snapshot.proximity_average == snapshot.average
    assert snapshot.nearby_count == 0
    assert engine.nearby_count(*SF) == 0
    assert palette.is_member(engine.proximity_average(*SF))


def test_store_failure_surfaces_and_skips_broadcast(palette, hub, clock):
    engine = AggregationEngine(palette, BrokenStore(clock=clock), hub, clock=clock)
    viewer = RecordingConnection()
    hub.register(viewer)

    with pytest.raises(StoreError):
        submit(engine, "u1", "#FF0000")

    assert viewer.messages == []


def test_commit_broadcasts_snapshot(engine, hub):
    viewer = RecordingConnection()
    hub.register(viewer)

    submit(engine, "u1", "#FF0000", SF)

    assert len(viewer.messages) == 1
    payload = json.loads(viewer.messages[0])
    assert payload["color"] == "#FF0000"
    assert payload["nearbyCount"] == 1


def test_broadcast_failure_does_not_fail_commit(engine, hub, store):
    hub.register(RecordingConnection(fail=True))

    submit(engine, "u1", "#FF0000")

    assert store.get_current_color() == "#FF0000"


def test_commit_listeners_receive_submission(engine):
    seen = []
    engine.subscribe(seen.append)

    submit(engine, "u1", "#FF0000")

    assert [s.submitter_id for s in seen] == ["u1"]
