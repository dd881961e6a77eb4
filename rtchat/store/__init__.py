"""Durable store: snapshot and session marker slots."""

from rtchat.store.kv import KeyValueStore, MemoryKeyValueStore
from rtchat.store.snapshot import SCHEMA_TAG, SessionMarker, SnapshotStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "SnapshotStore", "SessionMarker", "SCHEMA_TAG"]
