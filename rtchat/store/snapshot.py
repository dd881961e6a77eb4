"""Durable snapshot of every channel, plus the per-client session marker."""

from __future__ import annotations

import json
import logging
from typing import Protocol

from pydantic import ValidationError

from rtchat.chat.models import RegistrySnapshot, UserKey, dump_snapshot, snapshot_adapter

logger = logging.getLogger(__name__)

SCHEMA_TAG = "rtchat/4"


class Slots(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class SnapshotStore:
    """
    Persists the whole channel map under one fixed key.

    The stored value is tagged with :data:`SCHEMA_TAG`; data written by an
    incompatible version is discarded rather than parsed.
    """

    def __init__(self, slots: Slots, key: str = "rtchat_v4_channels"):
        self.slots = slots
        self.key = key

    def load_snapshot(self) -> RegistrySnapshot:
        """Read the snapshot. Absent or malformed data yields an empty one."""
        raw = self.slots.get(self.key)
        if raw is None:
            return {}
        try:
            blob = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Discarding malformed snapshot under %r: %s", self.key, e)
            return {}

        if not isinstance(blob, dict) or blob.get("schema") != SCHEMA_TAG:
            logger.warning("Discarding snapshot under %r: unknown schema", self.key)
            return {}

        try:
            channels = snapshot_adapter.validate_python(blob.get("channels", {}))
        except ValidationError as e:
            logger.warning("Discarding invalid snapshot under %r: %s", self.key, e.error_count())
            return {}

        # Map keys must agree with the records they point at
        return {c.id: c for c in channels.values()}

    def save_snapshot(self, snapshot: RegistrySnapshot) -> None:
        """Replace the stored snapshot. Raises TransportFailure on I/O errors."""
        blob = {"schema": SCHEMA_TAG, "channels": dump_snapshot(snapshot)}
        self.slots.set(self.key, json.dumps(blob, ensure_ascii=False))


class SessionMarker:
    """
    Remembers which user this client last logged in as.

    With a file slot the login outlives a single run and is shared
    by every process pointed at the same config until cleared.
    """

    def __init__(self, slots: Slots, key: str = "rtchat_user"):
        self.slots = slots
        self.key = key

    def get(self) -> UserKey | None:
        return self.slots.get(self.key) or None

    def set(self, user: UserKey) -> None:
        self.slots.set(self.key, user)

    def clear(self) -> None:
        self.slots.remove(self.key)
