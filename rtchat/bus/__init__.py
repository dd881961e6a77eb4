"""Sync bus module for broadcasting registry mutations between replicas."""

from rtchat.bus.events import (
    ChannelCreated,
    ChannelDeleted,
    MembersChanged,
    MessageAppended,
    SyncEvent,
    decode_event,
    encode_event,
)
from rtchat.bus.queue import SyncBus
from rtchat.bus.transport import BusTransport, LocalTransport, UdpTransport

__all__ = [
    "SyncBus",
    "SyncEvent",
    "ChannelCreated",
    "ChannelDeleted",
    "MembersChanged",
    "MessageAppended",
    "encode_event",
    "decode_event",
    "BusTransport",
    "LocalTransport",
    "UdpTransport",
]
