"""Shared fixtures: in-memory replicas wired to an in-process bus."""

import pytest

from rtchat.bus.queue import SyncBus
from rtchat.bus.transport import LocalTransport
from rtchat.chat.session import ChatSession
from rtchat.store.kv import MemoryKeyValueStore
from rtchat.store.snapshot import SessionMarker, SnapshotStore


@pytest.fixture(autouse=True)
def _isolated_hubs():
    LocalTransport.reset()
    yield
    LocalTransport.reset()


@pytest.fixture
def make_replica():
    """Build a replica on the ``room`` topic, optionally sharing a store."""

    def _make(slots=None, topic="room", directory=None):
        slots = slots if slots is not None else MemoryKeyValueStore()
        bus = SyncBus(LocalTransport(topic))
        bus.attach()
        session = ChatSession(
            SnapshotStore(slots),
            bus=bus,
            directory=directory,
            marker=SessionMarker(MemoryKeyValueStore()),
        )
        return session

    return _make


@pytest.fixture
def session(make_replica):
    return make_replica()
