"""Sync events: the four mutations replicas broadcast to each other."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar

from rtchat.chat.models import Channel, Message, UserKey


@dataclass
class SyncEvent:
    """Base for all bus events. Envelope fields are filled in by the bus."""

    type: ClassVar[str] = ""

    origin: str = field(default="", kw_only=True)  # Publishing replica
    seq: int = field(default=0, kw_only=True)  # Per-origin publish counter

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass
class ChannelCreated(SyncEvent):
    """A channel was created (also used to ship a whole channel)."""

    type: ClassVar[str] = "channel_created"

    channel: Channel

    @property
    def channel_id(self) -> str:
        return self.channel.id

    def payload(self) -> dict[str, Any]:
        return {"channel": self.channel.model_dump(mode="json", by_alias=True)}


@dataclass
class ChannelDeleted(SyncEvent):
    """A channel and its messages were removed by its owner."""

    type: ClassVar[str] = "channel_deleted"

    channel_id: str

    def payload(self) -> dict[str, Any]:
        return {"channelId": self.channel_id}


@dataclass
class MembersChanged(SyncEvent):
    """Full roster after a join, invite or removal (last writer wins)."""

    type: ClassVar[str] = "members_changed"

    channel_id: str
    members: list[UserKey]

    def payload(self) -> dict[str, Any]:
        return {"channelId": self.channel_id, "members": list(self.members)}


@dataclass
class MessageAppended(SyncEvent):
    """A message was posted."""

    type: ClassVar[str] = "message_appended"

    channel_id: str
    message: Message

    def payload(self) -> dict[str, Any]:
        return {"channelId": self.channel_id, "message": self.message.model_dump(mode="json", by_alias=True)}


EVENT_TYPES: dict[str, type[SyncEvent]] = {
    cls.type: cls for cls in (ChannelCreated, ChannelDeleted, MembersChanged, MessageAppended)
}


def encode_event(event: SyncEvent, topic: str) -> bytes:
    """Wire form: one JSON object per datagram."""
    body = {"type": event.type, "topic": topic, "origin": event.origin, "seq": event.seq}
    body.update(event.payload())
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_event(raw: bytes | str) -> tuple[str, SyncEvent]:
    """
    Parse a wire payload into ``(topic, event)``.

    Raises:
        ValueError: Payload is not a well-formed event (includes pydantic's
            ValidationError, which subclasses ValueError).
    """
    try:
        data = json.loads(raw)
    except RecursionError as e:
        raise ValueError("event nested too deeply") from e
    if not isinstance(data, dict):
        raise ValueError("event must be a JSON object")

    kind = data.get("type")
    cls = EVENT_TYPES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise ValueError(f"unknown event type: {kind!r}")

    try:
        envelope = {"origin": str(data.get("origin", "")), "seq": int(data.get("seq", 0))}
        if cls is ChannelCreated:
            event = ChannelCreated(channel=Channel.model_validate(data["channel"]), **envelope)
        elif cls is ChannelDeleted:
            event = ChannelDeleted(channel_id=str(data["channelId"]), **envelope)
        elif cls is MembersChanged:
            members = data["members"]
            if not isinstance(members, list):
                raise ValueError("members must be a list")
            event = MembersChanged(channel_id=str(data["channelId"]), members=[str(m) for m in members], **envelope)
        else:
            event = MessageAppended(
                channel_id=str(data["channelId"]),
                message=Message.model_validate(data["message"]),
                **envelope,
            )
    except KeyError as e:
        raise ValueError(f"missing field {e} in {cls.type}") from e
    except (TypeError, OverflowError) as e:
        raise ValueError(f"bad field in {cls.type}: {e}") from e

    return str(data.get("topic", "")), event
