"""Duplex channel wrapper around an accepted Starlette WebSocket.

A :class:`WebSocketChannel` owns a bounded outbound queue. Producers call
:meth:`WebSocketChannel.send`, which never blocks: a slow client fills its
own queue and loses frames, while every other client keeps receiving. The
socket itself is only touched from :meth:`WebSocketChannel.serve`.

Lifecycle notifications (``closed`` and ``errored``) fire at most once each,
whatever order the transport reports events in.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from mongo_notify.exceptions import ChannelDeliveryFailed

logger = logging.getLogger("mongo_notify.gateway")

CLOSE_INTERNAL_ERROR = 1011

ChannelCallback = Callable[["WebSocketChannel"], None]


class WebSocketChannel:
    """One admitted WebSocket connection."""

    def __init__(self, websocket: WebSocket, maxsize: int = 100, address: str = "unknown") -> None:
        self.websocket = websocket
        self.address = address
        self.channel_id = uuid4().hex[:8]
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._errored = False
        self._close_callbacks: list[ChannelCallback] = []
        self._error_callbacks: list[ChannelCallback] = []

    def __repr__(self) -> str:
        return f"WebSocketChannel(id={self.channel_id}, address={self.address!r})"

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and not self._errored
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        """Frames queued but not yet written to the socket."""
        return self._outbox.qsize()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def on_close(self, callback: ChannelCallback) -> None:
        self._close_callbacks.append(callback)

    def on_error(self, callback: ChannelCallback) -> None:
        self._error_callbacks.append(callback)

    def _fire(self, callbacks: list[ChannelCallback]) -> None:
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Channel callback failed for %s", self.channel_id)

    def mark_closed(self) -> None:
        """Fire the ``closed`` notification once."""
        if self._closed:
            return
        self._closed = True
        self._fire(self._close_callbacks)

    def mark_errored(self, exc: BaseException) -> None:
        """Log *exc* and fire the ``errored`` notification once."""
        if self._errored or self._closed:
            return
        self._errored = True
        logger.error(
            "WebSocket error on channel %s: %s",
            self.channel_id,
            exc,
            exc_info=exc,
            extra={"channel_id": self.channel_id, "client_address": self.address},
        )
        self._fire(self._error_callbacks)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, payload: str) -> None:
        """Queue *payload* for delivery without blocking.

        Raises:
            ChannelDeliveryFailed: the channel is not open or its queue is full.
        """
        if not self.is_open:
            raise ChannelDeliveryFailed(f"channel {self.channel_id} is not open")
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull as exc:
            raise ChannelDeliveryFailed(
                f"channel {self.channel_id} outbound queue is full"
            ) from exc

    async def _write_outbox(self) -> None:
        while True:
            payload = await self._outbox.get()
            await self.websocket.send_text(payload)

    async def _read_until_disconnect(self) -> None:
        # Inbound frames carry no meaning for this gateway; reading only
        # surfaces the disconnect.
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def serve(self) -> None:
        """Pump frames until the peer disconnects or the transport fails."""
        reader = asyncio.create_task(self._read_until_disconnect())
        writer = asyncio.create_task(self._write_outbox())
        try:
            done, pending = await asyncio.wait(
                {reader, writer}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                exc = task.exception()
                if exc is None or isinstance(exc, WebSocketDisconnect):
                    continue
                self.mark_errored(exc)
                await self.close(CLOSE_INTERNAL_ERROR)
        finally:
            if not reader.done() or not writer.done():
                reader.cancel()
                writer.cancel()
                await asyncio.gather(reader, writer, return_exceptions=True)
            self.mark_closed()

    async def close(self, code: int = 1000) -> None:
        """Actively close the socket if it is still up."""
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            logger.debug("Close on channel %s failed: %s", self.channel_id, exc)
