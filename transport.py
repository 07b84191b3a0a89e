"""Best-effort broadcast transport for status messages.

Datagrams carry a small JSON envelope:

    {"sender": <int>, "channel": "lily-status", "message": {...}}

There are no acknowledgements, no ordering and no retries: a message is
delivered at most once, or not at all. Garbage datagrams are dropped.
"""

import asyncio
import json
import socket
from typing import Awaitable, Callable, Optional

from constants import BROADCAST_ADDRESS, BROADCAST_PORT
from errors import TransportUnavailable

Received = tuple[int, dict, str]  # (sender_id, message, channel)


def encode_envelope(sender: int, message: dict, channel: str) -> bytes:
    return json.dumps(
        {"sender": sender, "channel": channel, "message": message},
        separators=(",", ":"),
    ).encode("utf-8")


def decode_envelope(data: bytes) -> Optional[Received]:
    """Parse a datagram. Returns None for anything that is not an envelope."""
    try:
        env = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(env, dict):
        return None
    sender, message, channel = env.get("sender"), env.get("message"), env.get("channel")
    if not isinstance(sender, int) or not isinstance(message, dict) \
            or not isinstance(channel, str):
        return None
    return sender, message, channel


class _DatagramQueue(asyncio.DatagramProtocol):
    """Pushes decoded envelopes into a bounded queue, dropping on overflow."""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def datagram_received(self, data, addr):
        received = decode_envelope(data)
        if received is None:
            return
        try:
            self.queue.put_nowait(received)
        except asyncio.QueueFull:
            pass  # Lossy by contract

    def error_received(self, exc):
        pass  # ICMP errors on broadcast sockets are expected noise


class UdpBroadcastTransport:
    """UDP broadcast endpoint, one per controller or display process."""

    def __init__(self, source_id: int, port: int = BROADCAST_PORT,
                 broadcast_address: str = BROADCAST_ADDRESS,
                 listen: bool = True, queue_size: int = 1024):
        self.source_id = source_id
        self.port = port
        self.broadcast_address = broadcast_address
        self.listen = listen
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._transport: Optional[asyncio.DatagramTransport] = None

    async def open(self):
        """Bind the socket. Raises TransportUnavailable if that is impossible."""
        loop = asyncio.get_running_loop()
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass  # Not supported on this kernel
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            # Senders bind an ephemeral port so they never steal display traffic
            sock.bind(("", self.port if self.listen else 0))
            sock.setblocking(False)
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramQueue(self._queue), sock=sock)
        except OSError as e:
            raise TransportUnavailable(
                f"cannot open UDP broadcast socket on port {self.port}: {e}") from e
        return self

    def send(self, message: dict, channel: str):
        """Fire-and-forget broadcast. Raises TransportUnavailable if closed."""
        if self._transport is None or self._transport.is_closing():
            raise TransportUnavailable("transport not open")
        self._transport.sendto(
            encode_envelope(self.source_id, message, channel),
            (self.broadcast_address, self.port))

    async def receive(self, timeout: float) -> Optional[Received]:
        """Wait up to timeout seconds for one message."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self):
        if self._transport:
            self._transport.close()
        self._transport = None


class LoopbackHub:
    """In-process broadcast medium with the UdpBroadcastTransport interface.

    Every endpoint sees every message sent by any endpoint (including its
    own, like a real broadcast). drop(sender, message) returning True loses
    the message for all receivers.
    """

    def __init__(self, drop: Optional[Callable[[int, dict], bool]] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.drop = drop
        self.sleep = sleep  # Used for receive timeouts (simulated time in tests)
        self.endpoints: list["LoopbackEndpoint"] = []
        self.sent: list[Received] = []

    def endpoint(self, source_id: int) -> "LoopbackEndpoint":
        ep = LoopbackEndpoint(self, source_id)
        self.endpoints.append(ep)
        return ep

    def _deliver(self, sender: int, message: dict, channel: str):
        self.sent.append((sender, message, channel))
        if self.drop and self.drop(sender, message):
            return
        for ep in self.endpoints:
            ep.inbox.append((sender, json.loads(json.dumps(message)), channel))


class LoopbackEndpoint:
    def __init__(self, hub: LoopbackHub, source_id: int):
        self.hub = hub
        self.source_id = source_id
        self.inbox: list[Received] = []
        self.closed = False

    async def open(self):
        return self

    def send(self, message: dict, channel: str):
        if self.closed:
            raise TransportUnavailable("endpoint closed")
        self.hub._deliver(self.source_id, message, channel)

    async def receive(self, timeout: float) -> Optional[Received]:
        if self.inbox:
            return self.inbox.pop(0)
        await self.hub.sleep(timeout)
        return self.inbox.pop(0) if self.inbox else None

    def close(self):
        self.closed = True
