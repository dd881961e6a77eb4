"""Tests for the durable store: slots, snapshot round-trip, malformed data."""

import json

import pytest

from rtchat.chat.models import Channel, Message
from rtchat.errors import TransportFailure
from rtchat.store.kv import KeyValueStore, MemoryKeyValueStore
from rtchat.store.snapshot import SCHEMA_TAG, SessionMarker, SnapshotStore


def _snapshot() -> dict[str, Channel]:
    general = Channel(
        id="ch_1",
        name="general",
        owner="u1",
        is_public=True,
        members=["u1", "u2"],
        messages=[
            Message(id="m_1", author="u1", text="hello", timestamp=1_700_000_000_000),
            Message(id="m_2", author="u2", text="привет", timestamp=1_700_000_000_500),
        ],
    )
    team = Channel(id="ch_2", name="team", owner="u2", is_public=False, members=["u2"], messages=[])
    return {general.id: general, team.id: team}


class TestKeyValueStore:
    def test_missing_file_reads_empty(self, tmp_path):
        kv = KeyValueStore(tmp_path / "storage.json")
        assert kv.get("anything") is None

    def test_set_get_remove(self, tmp_path):
        kv = KeyValueStore(tmp_path / "sub" / "storage.json")
        kv.set("a", "1")
        kv.set("b", "2")
        assert kv.get("a") == "1"
        kv.remove("a")
        assert kv.get("a") is None
        assert kv.get("b") == "2"

    def test_values_survive_new_instance(self, tmp_path):
        KeyValueStore(tmp_path / "s.json").set("k", "v")
        assert KeyValueStore(tmp_path / "s.json").get("k") == "v"

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{not json")
        assert KeyValueStore(path).get("k") is None

    def test_non_object_file_reads_empty(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("[1, 2, 3]")
        assert KeyValueStore(path).get("k") is None

    def test_write_failure_raises_transport_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        kv = KeyValueStore(blocker / "s.json")
        with pytest.raises(TransportFailure):
            kv.set("k", "v")

    def test_no_temp_files_left_behind(self, tmp_path):
        kv = KeyValueStore(tmp_path / "s.json")
        kv.set("k", "v")
        assert [p.name for p in tmp_path.iterdir()] == ["s.json"]


class TestSnapshotStore:
    @pytest.fixture
    def slots(self):
        return MemoryKeyValueStore()

    def test_round_trip(self, slots):
        store = SnapshotStore(slots)
        snap = _snapshot()
        store.save_snapshot(snap)
        assert store.load_snapshot() == snap

    def test_round_trip_through_file(self, tmp_path):
        store = SnapshotStore(KeyValueStore(tmp_path / "storage.json"))
        snap = _snapshot()
        store.save_snapshot(snap)
        assert SnapshotStore(KeyValueStore(tmp_path / "storage.json")).load_snapshot() == snap

    def test_empty_round_trip(self, slots):
        store = SnapshotStore(slots)
        store.save_snapshot({})
        assert store.load_snapshot() == {}

    def test_absent_is_empty(self, slots):
        assert SnapshotStore(slots).load_snapshot() == {}

    def test_saved_value_is_tagged_camel_case(self, slots):
        SnapshotStore(slots, key="chan").save_snapshot(_snapshot())
        blob = json.loads(slots.get("chan"))
        assert blob["schema"] == SCHEMA_TAG
        assert blob["channels"]["ch_2"]["isPublic"] is False

    def test_save_replaces_previous_value(self, slots):
        store = SnapshotStore(slots)
        store.save_snapshot(_snapshot())
        store.save_snapshot({})
        assert store.load_snapshot() == {}

    @pytest.mark.parametrize("raw", [
        "{broken",
        "[]",
        json.dumps({"schema": "rtchat/3", "channels": {}}),
        json.dumps({"ch_1": {"id": "ch_1"}}),
        json.dumps({"schema": SCHEMA_TAG, "channels": {"ch_1": {"id": "ch_1"}}}),
        json.dumps({"schema": SCHEMA_TAG, "channels": {"ch_1": {
            "id": "ch_1", "name": "x", "owner": "u1", "isPublic": True, "members": ["u1"],
            "messages": [{"id": "m", "author": "u1", "text": "   ", "timestamp": 1}],
        }}}),
    ])
    def test_malformed_is_empty(self, slots, raw):
        slots.set("rtchat_v4_channels", raw)
        assert SnapshotStore(slots).load_snapshot() == {}

    def test_loaded_channels_keep_owner_in_members(self, slots):
        blob = {"schema": SCHEMA_TAG, "channels": {"ch_1": {
            "id": "ch_1", "name": "x", "owner": "u1", "isPublic": True, "members": ["u2", "u2"], "messages": [],
        }}}
        slots.set("rtchat_v4_channels", json.dumps(blob))
        ch = SnapshotStore(slots).load_snapshot()["ch_1"]
        assert ch.members == ["u1", "u2"]


class TestSessionMarker:
    def test_set_get_clear(self):
        marker = SessionMarker(MemoryKeyValueStore())
        assert marker.get() is None
        marker.set("u2")
        assert marker.get() == "u2"
        marker.clear()
        assert marker.get() is None

    def test_separate_from_snapshot_slot(self):
        slots = MemoryKeyValueStore()
        SessionMarker(slots).set("u1")
        assert SnapshotStore(slots).load_snapshot() == {}
