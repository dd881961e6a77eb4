"""Sync bus: stamps, broadcasts and ingests replica events."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Callable

from rtchat.bus.events import SyncEvent, decode_event, encode_event
from rtchat.bus.transport import BusTransport

logger = logging.getLogger(__name__)

EventHandler = Callable[[SyncEvent], None]


class SyncBus:
    """
    Broadcast bus that keeps replicas of the channel registry convergent.

    Outbound events are stamped with this replica's id and a publish
    counter, then handed to the transport. Inbound payloads are decoded,
    filtered (other topics, self-echo) and queued; handlers run when the
    queue is drained, on the caller's control flow.
    """

    def __init__(self, transport: BusTransport, replica_id: str | None = None):
        self.transport = transport
        self.topic = transport.topic
        self.replica_id = replica_id or f"r_{secrets.token_hex(4)}"
        self.inbound: asyncio.Queue[SyncEvent] = asyncio.Queue()
        self.missed = 0
        self._seq = 0
        self._last_seen: dict[str, int] = {}
        self._handlers: list[EventHandler] = []
        self._attached = False

    def attach(self) -> None:
        """Start receiving from the transport."""
        if not self._attached:
            self.transport.attach(self._receive)
            self._attached = True

    def on_event(self, handler: EventHandler) -> None:
        """Register a handler for events published by other replicas."""
        self._handlers.append(handler)

    def publish(self, event: SyncEvent) -> None:
        """Broadcast an event. Fire and forget: failures are logged, not raised."""
        self._seq += 1
        event.origin = self.replica_id
        event.seq = self._seq
        try:
            self.transport.send(encode_event(event, self.topic))
        except OSError as e:
            logger.error("Publish of %s #%d failed: %s", event.type, event.seq, e)

    def _receive(self, raw: bytes) -> None:
        try:
            topic, event = decode_event(raw)
        except ValueError as e:
            logger.debug("Dropping malformed bus payload: %s", e)
            return
        if topic != self.topic or event.origin == self.replica_id:
            return

        last = self._last_seen.get(event.origin)
        if last is not None and event.seq > last + 1:
            gap = event.seq - last - 1
            self.missed += gap
            logger.warning("Missed %d event(s) from replica %s", gap, event.origin)
        if last is None or event.seq > last:
            self._last_seen[event.origin] = event.seq

        self.inbound.put_nowait(event)

    def _dispatch(self, event: SyncEvent) -> None:
        for handler in self._handlers:
            handler(event)

    def dispatch_pending(self) -> int:
        """Run handlers for every queued event. Returns how many were handled."""
        count = 0
        while True:
            try:
                event = self.inbound.get_nowait()
            except asyncio.QueueEmpty:
                return count
            self._dispatch(event)
            count += 1

    async def run(self) -> None:
        """Consume inbound events until cancelled."""
        self.attach()
        while True:
            event = await self.inbound.get()
            self._dispatch(event)

    @property
    def pending(self) -> int:
        """Number of queued inbound events."""
        return self.inbound.qsize()

    def close(self) -> None:
        self.transport.close()
        self._attached = False
