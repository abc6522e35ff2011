"""MongoDB change-stream adapter feeding the connection registry.

The adapter watches the whole deployment (or one database) with
``full_document="updateLookup"`` so update events carry the complete
current document, not just the changed fields. Each event is relayed as::

    {"type": "db_change", "data": <change event>}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from mongo_notify.api.registry import ConnectionRegistry
from mongo_notify.exceptions import UpstreamSubscriptionFailed

logger = logging.getLogger("mongo_notify.feed")

DB_CHANGE = "db_change"
FULL_DOCUMENT = "updateLookup"


class ChangeFeedAdapter:
    """Subscribe once to the upstream change stream and broadcast every event."""

    def __init__(
        self,
        client: Any,
        registry: ConnectionRegistry,
        database: str | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.database = database
        self.events_relayed = 0
        self._stream: Any = None
        self._task: asyncio.Task | None = None

    @property
    def watch_scope(self) -> str:
        return f"database:{self.database}" if self.database else "deployment"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Open the change stream and start relaying.

        Raises:
            UpstreamSubscriptionFailed: the deployment is unreachable or the
                stream could not be opened (e.g. not a replica set).
        """
        target = self.client[self.database] if self.database else self.client
        try:
            await self.client.admin.command("ping")
            self._stream = await target.watch(full_document=FULL_DOCUMENT)
        except Exception as exc:
            raise UpstreamSubscriptionFailed(
                f"Could not open change stream on {self.watch_scope}: {exc}"
            ) from exc

        self._task = asyncio.create_task(self._consume(), name="change-feed")
        logger.info("Change stream open on %s", self.watch_scope)

    async def _consume(self) -> None:
        try:
            async for change in self._stream:
                self.handle(change)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change stream on %s failed; no further events", self.watch_scope)
            return
        logger.error("Change stream on %s ended; no further events", self.watch_scope)

    def handle(self, change: Any) -> int:
        """Relay one change event to every connected client."""
        delivered = self.registry.broadcast({"type": DB_CHANGE, "data": change})
        self.events_relayed += 1
        logger.debug(
            "Relayed %s event to %d clients",
            change.get("operationType", "unknown") if isinstance(change, dict) else "unknown",
            delivered,
        )
        return delivered

    async def stop(self) -> None:
        """Stop relaying and close the stream."""
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._stream is not None:
            await self._stream.close()
            self._stream = None
