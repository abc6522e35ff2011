"""Live connection registry and fan-out broadcaster."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from mongo_notify.exceptions import ChannelDeliveryFailed
from mongo_notify.serialization import dumps

logger = logging.getLogger("mongo_notify.gateway")


class Channel(Protocol):
    """What the registry needs from a connection."""

    channel_id: str

    @property
    def is_open(self) -> bool: ...

    def send(self, payload: str) -> None: ...

    def on_close(self, callback) -> None: ...

    def on_error(self, callback) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionRegistry:
    """Fan-out registry that pushes one serialized frame to every live channel.

    :meth:`broadcast` serializes the message once, snapshots the channel set
    and hands the frame to each open channel via its non-blocking ``send``.
    A channel that is not open, or whose queue is full, is skipped; it stays
    registered until its own ``closed``/``errored`` notification removes it.

    Thread-safety is ensured via a :class:`threading.Lock` around the
    channel set mutations and the snapshot.
    """

    def __init__(self) -> None:
        self._channels: set[Channel] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def __contains__(self, channel: object) -> bool:
        with self._lock:
            return channel in self._channels

    def add(self, channel: Channel) -> None:
        """Register a channel. Adding an already-present channel is a no-op."""
        with self._lock:
            self._channels.add(channel)

    def remove(self, channel: Channel) -> None:
        """Unregister a channel. Safe to call repeatedly or for unknown channels."""
        with self._lock:
            self._channels.discard(channel)

    def attach(self, channel: Channel) -> None:
        """Register *channel* and remove it again on its close or error."""
        self.add(channel)
        channel.on_close(self.remove)
        channel.on_error(self.remove)

    def snapshot(self) -> list[Channel]:
        with self._lock:
            return list(self._channels)

    def broadcast(self, message: Any) -> int:
        """Deliver *message* to every open channel. Returns the delivery count."""
        payload = dumps(message)
        delivered = 0
        for channel in self.snapshot():
            if not channel.is_open:
                continue
            try:
                channel.send(payload)
            except ChannelDeliveryFailed as exc:
                logger.warning(
                    "Dropped frame for channel %s: %s",
                    channel.channel_id,
                    exc.message,
                    extra={"channel_id": channel.channel_id},
                )
                continue
            delivered += 1
        return delivered

    async def close_all(self, code: int = 1001) -> None:
        """Close every registered channel (shutdown)."""
        for channel in self.snapshot():
            await channel.close(code)
            self.remove(channel)
