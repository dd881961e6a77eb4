"""Channel registry: membership rules, local mutations and sync ingestion."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from rtchat.bus.events import ChannelCreated, ChannelDeleted, MembersChanged, MessageAppended, SyncEvent
from rtchat.bus.queue import SyncBus
from rtchat.chat.models import Channel, Message, RegistrySnapshot, UserIdentity, UserKey, new_id
from rtchat.directory.provider import display_name, search_users
from rtchat.errors import Refusal, TransportFailure
from rtchat.store.kv import KeyValueStore
from rtchat.store.snapshot import SessionMarker, SnapshotStore

if TYPE_CHECKING:
    from rtchat.config.schema import Config

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChatSession:
    """
    One replica of the channel registry plus this client's session state.

    Owns the snapshot (``channels``), the active user and the active channel.
    Every local operation validates its preconditions, mutates the snapshot,
    saves it and publishes a sync event. A failed precondition is a silent
    refusal: nothing changes, nothing is published, the operation returns a
    falsy value and ``last_refusal`` records why.

    Confirmation prompts belong to the caller; by the time an operation is
    invoked the user has already agreed to it.
    """

    def __init__(
        self,
        store: SnapshotStore,
        bus: SyncBus | None = None,
        directory: list[UserIdentity] | None = None,
        marker: SessionMarker | None = None,
    ):
        self.store = store
        self.bus = bus
        self.directory: list[UserIdentity] = list(directory or [])
        self.marker = marker
        self.channels: RegistrySnapshot = store.load_snapshot()
        self.active_user: UserKey | None = None
        self.active_channel: str | None = None
        self.last_refusal: Refusal | None = None
        self._last_ts = 0
        self._registry_listeners: list[Callable[[], None]] = []
        self._active_listeners: list[Callable[[str | None], None]] = []

        if bus is not None:
            bus.on_event(self.apply_event)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def on_registry_changed(self, callback: Callable[[], None]) -> None:
        self._registry_listeners.append(callback)

    def on_active_channel_changed(self, callback: Callable[[str | None], None]) -> None:
        self._active_listeners.append(callback)

    def _registry_changed(self) -> None:
        for cb in self._registry_listeners:
            cb()

    def _active_changed(self) -> None:
        for cb in self._active_listeners:
            cb(self.active_channel)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refuse(self, reason: Refusal, op: str, detail: str) -> None:
        self.last_refusal = reason
        logger.info("%s refused (%s): %s", op, reason.value, detail)

    def _known_user(self, user: UserKey) -> bool:
        # Without a directory every key is accepted
        return not self.directory or any(u.id == user for u in self.directory)

    def _persist(self) -> None:
        try:
            self.store.save_snapshot(self.channels)
        except TransportFailure as e:
            logger.error("Snapshot save failed: %s", e)

    def _publish(self, event: SyncEvent) -> None:
        if self.bus is not None:
            self.bus.publish(event)

    def _commit(self, event: SyncEvent) -> None:
        self.last_refusal = None
        self._persist()
        self._publish(event)
        self._registry_changed()

    def _next_timestamp(self, floor: int = 0) -> int:
        ts = max(_now_ms(), self._last_ts + 1, floor + 1)
        self._last_ts = ts
        return ts

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, user: UserKey) -> bool:
        """Select the acting user and remember it for the rest of this run."""
        if not user or not self._known_user(user):
            self._refuse(Refusal.NOT_FOUND, "login", f"unknown user {user!r}")
            return False
        self.active_user = user
        if self.marker is not None:
            try:
                self.marker.set(user)
            except TransportFailure as e:
                logger.error("Session marker save failed: %s", e)
        self.last_refusal = None
        return True

    def restore_login(self) -> UserKey | None:
        """Pre-select the user recorded by the session marker, if still known."""
        if self.marker is None:
            return None
        user = self.marker.get()
        if user and self._known_user(user):
            self.active_user = user
            return user
        return None

    def logout(self) -> None:
        self.active_user = None
        if self.active_channel is not None:
            self.active_channel = None
            self._active_changed()
        if self.marker is not None:
            try:
                self.marker.clear()
            except TransportFailure as e:
                logger.error("Session marker clear failed: %s", e)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_channels(self) -> list[Channel]:
        """All channels, case-insensitively by name, ties by name then id."""
        return sorted(self.channels.values(), key=lambda c: (c.name.casefold(), c.name, c.id))

    def get_channel(self, channel_id: str | None) -> Channel | None:
        if channel_id is None:
            return None
        return self.channels.get(channel_id)

    def is_owner(self, channel_id: str, user: UserKey | None = None) -> bool:
        ch = self.channels.get(channel_id)
        return ch is not None and ch.owner == (user or self.active_user)

    def can_post(self, channel_id: str, user: UserKey | None = None) -> bool:
        ch = self.channels.get(channel_id)
        return ch is not None and ch.has_member(user or self.active_user)

    def display_name(self, user: UserKey) -> str:
        return display_name(self.directory, user)

    def invite_candidates(self, channel_id: str, query: str) -> list[UserIdentity]:
        """Directory users matching ``query`` who are not yet in the channel."""
        ch = self.channels.get(channel_id)
        return search_users(self.directory, query, exclude=ch.members if ch else ())

    # ------------------------------------------------------------------
    # Active channel
    # ------------------------------------------------------------------

    def open_channel(self, channel_id: str) -> bool:
        """Make a channel the active one. Only members may open a channel."""
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, "open_channel", f"no channel {channel_id!r}")
            return False
        if not ch.has_member(self.active_user):
            self._refuse(Refusal.UNAUTHORIZED, "open_channel", f"{self.active_user!r} is not a member")
            return False
        self.last_refusal = None
        self.active_channel = channel_id
        self._active_changed()
        return True

    def close_channel(self) -> None:
        if self.active_channel is not None:
            self.active_channel = None
            self._active_changed()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_channel(self, name: str, is_public: bool = True, owner: UserKey | None = None) -> Channel | None:
        """Create a channel owned (and initially joined) by ``owner``."""
        owner = owner or self.active_user
        name = (name or "").strip()
        if not owner:
            self._refuse(Refusal.UNAUTHORIZED, "create_channel", "no active user")
            return None
        if not name:
            self._refuse(Refusal.INVALID_INPUT, "create_channel", "empty name")
            return None
        if not self._known_user(owner):
            self._refuse(Refusal.NOT_FOUND, "create_channel", f"unknown user {owner!r}")
            return None

        channel_id = new_id("ch")
        while channel_id in self.channels:
            channel_id = new_id("ch")

        ch = Channel(id=channel_id, name=name, owner=owner, is_public=is_public, members=[owner], messages=[])
        self.channels[channel_id] = ch
        logger.info("Channel %s (%s) created by %s", ch.id, ch.name, owner)
        self._commit(ChannelCreated(channel=ch.model_copy(deep=True)))
        return ch

    def delete_channel(self, channel_id: str, requester: UserKey | None = None) -> bool:
        """Remove a channel and all of its messages. Owner only."""
        requester = requester or self.active_user
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, "delete_channel", f"no channel {channel_id!r}")
            return False
        if requester != ch.owner:
            self._refuse(Refusal.UNAUTHORIZED, "delete_channel", f"{requester!r} does not own {channel_id}")
            return False

        del self.channels[channel_id]
        logger.info("Channel %s deleted by %s", channel_id, requester)
        self._commit(ChannelDeleted(channel_id=channel_id))
        if self.active_channel == channel_id:
            self.active_channel = None
            self._active_changed()
        return True

    def _add(self, op: str, channel_id: str, user: UserKey | None) -> bool:
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, op, f"no channel {channel_id!r}")
            return False
        if not user or not self._known_user(user):
            self._refuse(Refusal.NOT_FOUND, op, f"unknown user {user!r}")
            return False
        if user in ch.members:
            self.last_refusal = None
            return True

        ch.members.append(user)
        logger.info("%s joined %s", user, channel_id)
        self._commit(MembersChanged(channel_id=channel_id, members=list(ch.members)))
        if self.active_channel == channel_id:
            self._active_changed()
        return True

    def join_channel(self, channel_id: str, user: UserKey | None = None) -> bool:
        """
        Add ``user`` to a channel's roster.

        Visibility policy (public channels only) is the caller's job; private
        channels are normally entered through :meth:`add_member`.
        """
        return self._add("join_channel", channel_id, user or self.active_user)

    def add_member(self, channel_id: str, requester: UserKey | None, user: UserKey) -> bool:
        """
        Invite ``user`` into a channel.

        The requester must be a member; on a private channel only the owner
        may invite.
        """
        requester = requester or self.active_user
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, "add_member", f"no channel {channel_id!r}")
            return False
        if not ch.has_member(requester):
            self._refuse(Refusal.UNAUTHORIZED, "add_member", f"{requester!r} is not a member of {channel_id}")
            return False
        if not ch.is_public and requester != ch.owner:
            self._refuse(Refusal.UNAUTHORIZED, "add_member", f"{requester!r} does not own private {channel_id}")
            return False
        return self._add("add_member", channel_id, user)

    def remove_member(self, channel_id: str, requester: UserKey | None, target: UserKey) -> bool:
        """Owner removes someone else from a private channel."""
        requester = requester or self.active_user
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, "remove_member", f"no channel {channel_id!r}")
            return False
        if requester != ch.owner:
            self._refuse(Refusal.UNAUTHORIZED, "remove_member", f"{requester!r} does not own {channel_id}")
            return False
        if ch.is_public:
            self._refuse(Refusal.UNAUTHORIZED, "remove_member", f"{channel_id} is public")
            return False
        if target == ch.owner:
            self._refuse(Refusal.INVALID_INPUT, "remove_member", "the owner cannot be removed")
            return False
        if target not in ch.members:
            self._refuse(Refusal.NOT_FOUND, "remove_member", f"{target!r} is not a member")
            return False

        ch.members.remove(target)
        logger.info("%s removed %s from %s", requester, target, channel_id)
        self._commit(MembersChanged(channel_id=channel_id, members=list(ch.members)))
        if self.active_channel == channel_id:
            self._active_changed()
        return True

    def post_message(self, channel_id: str, author: UserKey | None, text: str) -> Message | None:
        """Append a message from a member. Text is trimmed and must not be empty."""
        author = author or self.active_user
        text = (text or "").strip()
        ch = self.channels.get(channel_id)
        if ch is None:
            self._refuse(Refusal.NOT_FOUND, "post_message", f"no channel {channel_id!r}")
            return None
        if not ch.has_member(author):
            self._refuse(Refusal.UNAUTHORIZED, "post_message", f"{author!r} is not a member of {channel_id}")
            return None
        if not text:
            self._refuse(Refusal.INVALID_INPUT, "post_message", "empty text")
            return None

        # Stay monotonic per sender even across restarts of this client
        floor = max((m.timestamp for m in ch.messages if m.author == author), default=0)
        msg = Message(id=new_id("m"), author=author, text=text, timestamp=self._next_timestamp(floor))
        ch.messages.append(msg)
        self._commit(MessageAppended(channel_id=channel_id, message=msg))
        if self.active_channel == channel_id:
            self._active_changed()
        return msg

    # ------------------------------------------------------------------
    # Sync ingestion
    # ------------------------------------------------------------------

    def apply_event(self, event: SyncEvent) -> bool:
        """
        Apply an event published by another replica.

        Mirrors the local mutation as a direct overwrite (rosters) or append
        (messages), saves the snapshot and notifies listeners. Events about
        channels this replica does not know are ignored. Returns whether the
        snapshot changed.
        """
        if isinstance(event, ChannelCreated):
            channel_id = event.channel.id
            self.channels[channel_id] = event.channel.model_copy(deep=True)
        elif isinstance(event, ChannelDeleted):
            channel_id = event.channel_id
            if self.channels.pop(channel_id, None) is None:
                return False
        elif isinstance(event, MembersChanged):
            channel_id = event.channel_id
            ch = self.channels.get(channel_id)
            if ch is None:
                return False
            members = list(dict.fromkeys(event.members))
            if ch.owner not in members:
                members.insert(0, ch.owner)
            ch.members = members
        elif isinstance(event, MessageAppended):
            channel_id = event.channel_id
            ch = self.channels.get(channel_id)
            if ch is None or any(m.id == event.message.id for m in ch.messages):
                return False
            ch.messages.append(event.message)
        else:
            logger.debug("Ignoring unsupported event %r", event)
            return False

        logger.debug("Applied %s #%d from %s to %s", event.type, event.seq, event.origin, channel_id)
        self._persist()
        self._registry_changed()
        if channel_id == self.active_channel:
            if isinstance(event, ChannelDeleted):
                self.active_channel = None
            self._active_changed()
        return True

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: Config,
        bus: SyncBus | None = None,
        directory: list[UserIdentity] | None = None,
    ) -> "ChatSession":
        """Build a session backed by the file slots named in ``config``."""
        store = SnapshotStore(KeyValueStore(config.store_path), key=config.store.key)
        marker = SessionMarker(KeyValueStore(config.session_path), key=config.session.key)
        return cls(store, bus=bus, directory=directory, marker=marker)
