"""Broadcast transports: anything attached to the same topic hears every send."""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from typing import Callable

logger = logging.getLogger(__name__)

Deliver = Callable[[bytes], None]

MAX_DATAGRAM = 65_507


class BusTransport:
    """Fire-and-forget broadcast of opaque payloads on a named topic."""

    topic: str

    def attach(self, deliver: Deliver) -> None:
        """Start handing inbound payloads to ``deliver``."""
        raise NotImplementedError

    def send(self, payload: bytes) -> None:
        """Broadcast to every other attached endpoint. No acknowledgement."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class LocalTransport(BusTransport):
    """
    In-process broadcast topic.

    Every ``LocalTransport`` created with the same topic name shares one hub;
    a send reaches all other attached endpoints synchronously and never loops
    back to the sender. Endpoints that attach later miss earlier sends.
    """

    _hubs: dict[str, list["LocalTransport"]] = {}

    def __init__(self, topic: str = "rtchat_v4_bc"):
        self.topic = topic
        self._deliver: Deliver | None = None

    def attach(self, deliver: Deliver) -> None:
        self._deliver = deliver
        peers = self._hubs.setdefault(self.topic, [])
        if self not in peers:
            peers.append(self)

    def send(self, payload: bytes) -> None:
        for peer in list(self._hubs.get(self.topic, ())):
            if peer is not self and peer._deliver is not None:
                peer._deliver(payload)

    def close(self) -> None:
        peers = self._hubs.get(self.topic, [])
        if self in peers:
            peers.remove(self)
        if not peers:
            self._hubs.pop(self.topic, None)
        self._deliver = None

    @classmethod
    def reset(cls) -> None:
        """Detach every endpoint on every topic."""
        cls._hubs.clear()


class UdpTransport(BusTransport):
    """
    Host-local UDP multicast.

    Datagrams go to ``group:port`` with TTL 0 and loopback enabled, so every
    process on this host that joined the group receives them and nothing
    leaves the machine. The topic name travels inside the payload; the bus
    drops payloads for other topics. ``attach`` must run inside an asyncio
    event loop.
    """

    def __init__(self, topic: str = "rtchat_v4_bc", group: str = "239.255.77.77", port: int = 47474):
        self.topic = topic
        self.group = group
        self.port = port
        self._send_sock: socket.socket | None = None
        self._recv_sock: socket.socket | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._deliver: Deliver | None = None

    def _sender(self) -> socket.socket:
        if self._send_sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 0)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
            self._send_sock = sock
        return self._send_sock

    def attach(self, deliver: Deliver) -> None:
        loop = asyncio.get_running_loop()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", self.port))
        mreq = struct.pack("4s4s", socket.inet_aton(self.group), socket.inet_aton("0.0.0.0"))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setblocking(False)

        self._recv_sock = sock
        self._loop = loop
        self._deliver = deliver
        loop.add_reader(sock.fileno(), self._on_readable)
        logger.debug("Listening on %s:%d for topic %s", self.group, self.port, self.topic)

    def _on_readable(self) -> None:
        if self._recv_sock is None or self._deliver is None:
            return
        while True:
            try:
                data, _ = self._recv_sock.recvfrom(MAX_DATAGRAM)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                logger.error("Bus receive failed: %s", e)
                return
            self._deliver(data)

    def send(self, payload: bytes) -> None:
        # The sender's own copy loops back; the bus discards self-echo by origin
        self._sender().sendto(payload, (self.group, self.port))

    def close(self) -> None:
        if self._recv_sock is not None:
            if self._loop is not None and not self._loop.is_closed():
                self._loop.remove_reader(self._recv_sock.fileno())
            self._recv_sock.close()
            self._recv_sock = None
        if self._send_sock is not None:
            self._send_sock.close()
            self._send_sock = None
        self._deliver = None
