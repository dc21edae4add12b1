"""
Invalidation channel contract and an in-memory bus.

A channel broadcasts ``"<node_id>:<flag_name>"`` to every process that
shares the store. Delivery is best effort; receivers whose message was
lost fall back on the cache TTL.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from shared.errors import NotificationError
from shared.logging import get_logger

# (origin node id, flag name)
InvalidationHandler = Callable[[str, str], Awaitable[None]]


def new_node_id() -> str:
    return uuid.uuid4().hex


def encode_message(node_id: str, flag_name: str) -> str:
    return f"{node_id}:{flag_name}"


def decode_message(payload: Any) -> Tuple[str, str]:
    """Split a payload into (node_id, flag_name)."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if not isinstance(payload, str):
        raise NotificationError("decode", f"Unexpected payload type {type(payload).__name__}")

    # Flag names may contain ':', node ids never do
    node_id, sep, flag_name = payload.partition(":")
    if not sep or not node_id or not flag_name:
        raise NotificationError("decode", f"Malformed invalidation payload: {payload!r}")
    return node_id, flag_name


class NotificationChannel(ABC):
    """Broadcasts flag invalidations between processes."""

    channel_type = "abstract"

    def __init__(self, node_id: Optional[str] = None):
        self.node_id = node_id or new_node_id()
        self.logger = get_logger(f"flags.notifications.{self.channel_type}")
        self._handler: Optional[InvalidationHandler] = None
        self.running = False

    @abstractmethod
    async def start(self, handler: InvalidationHandler):
        """Begin delivering received invalidations to ``handler``."""

    @abstractmethod
    async def stop(self):
        """Stop receiving and release resources."""

    @abstractmethod
    async def publish(self, flag_name: str):
        """Broadcast an invalidation for ``flag_name``. May raise."""

    async def _dispatch(self, payload: Any):
        """Decode a raw payload and hand it to the handler; never raises."""
        if self._handler is None:
            return
        try:
            node_id, flag_name = decode_message(payload)
        except NotificationError as e:
            self.logger.warning("Dropping malformed invalidation", error=str(e))
            return

        try:
            await self._handler(node_id, flag_name)
        except Exception as e:
            self.logger.error("Invalidation handler failed", flag_name=flag_name, error=str(e))


class InMemoryNotificationBus:
    """Fan-out hub connecting in-memory channels within one interpreter.

    Set ``drop_messages`` to simulate a broadcast that never arrives.
    """

    def __init__(self):
        self._channels: List["InMemoryChannel"] = []
        self.drop_messages = False
        self.published: List[str] = []

    def attach(self, channel: "InMemoryChannel"):
        if channel not in self._channels:
            self._channels.append(channel)

    def detach(self, channel: "InMemoryChannel"):
        if channel in self._channels:
            self._channels.remove(channel)

    async def broadcast(self, payload: str):
        self.published.append(payload)
        if self.drop_messages:
            return
        for channel in list(self._channels):
            await channel._dispatch(payload)


class InMemoryChannel(NotificationChannel):
    """Channel backed by an ``InMemoryNotificationBus``."""

    channel_type = "memory"

    def __init__(self, bus: InMemoryNotificationBus, node_id: Optional[str] = None):
        super().__init__(node_id)
        self.bus = bus

    async def start(self, handler: InvalidationHandler):
        self._handler = handler
        self.bus.attach(self)
        self.running = True

    async def stop(self):
        self.bus.detach(self)
        self.running = False

    async def publish(self, flag_name: str):
        if not self.running:
            raise NotificationError(self.channel_type, "Channel not started")
        await self.bus.broadcast(encode_message(self.node_id, flag_name))
