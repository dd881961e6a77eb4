"""Chat data model: users, channels and messages."""

from __future__ import annotations

import secrets

from pydantic import ConfigDict, Field, TypeAdapter, field_validator

from rtchat.config.schema import Base

UserKey = str


class UserIdentity(Base):
    """A directory entry. Loaded once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: UserKey
    name: str


class Message(Base):
    """A chat message. Immutable after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    author: UserKey
    text: str
    timestamp: int  # epoch milliseconds

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message text must not be blank")
        return v


class Channel(Base):
    """A named conversation space with an owner, a roster and a message log."""

    id: str
    name: str
    owner: UserKey
    is_public: bool = True
    members: list[UserKey] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)

    @field_validator("members")
    @classmethod
    def _dedupe_members(cls, v: list[UserKey]) -> list[UserKey]:
        return list(dict.fromkeys(v))

    def model_post_init(self, __context) -> None:
        if self.owner not in self.members:
            self.members.insert(0, self.owner)

    def has_member(self, user: UserKey | None) -> bool:
        return user is not None and user in self.members


RegistrySnapshot = dict[str, Channel]

snapshot_adapter: TypeAdapter[RegistrySnapshot] = TypeAdapter(RegistrySnapshot)


def new_id(prefix: str = "id") -> str:
    """Random identifier such as ``ch_3f9a1c2b7d4e``."""
    return f"{prefix}_{secrets.token_hex(6)}"


def dump_snapshot(channels: RegistrySnapshot) -> dict:
    """JSON-ready form of a snapshot (camelCase keys)."""
    return snapshot_adapter.dump_python(channels, mode="json", by_alias=True)
