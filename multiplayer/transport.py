"""In-process message hub for one room.

Each subscriber gets its own ``asyncio.Queue``. Subscriptions are closed
explicitly; a closed subscription is removed from the hub and its pending
``get`` calls return ``None``.
"""

from __future__ import annotations

import asyncio
import logging

from multiplayer.messages import Envelope

logger = logging.getLogger(__name__)

HOST_ID = "__host__"


class Subscription:
    def __init__(self, hub: "BroadcastHub", subscriber_id: str):
        self.hub = hub
        self.subscriber_id = subscriber_id
        self.queue: asyncio.Queue[Envelope | None] = asyncio.Queue()
        self.closed = False

    async def get(self, timeout: float | None = None) -> Envelope | None:
        """Next envelope, or None once closed. Raises asyncio.TimeoutError on timeout."""
        if self.closed and self.queue.empty():
            return None
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub._remove(self)
        self.queue.put_nowait(None)


class BroadcastHub:
    def __init__(self, room_id: str = ""):
        self.room_id = room_id
        self._subs: dict[str, Subscription] = {}
        self.sent = 0

    def subscribe(self, subscriber_id: str) -> Subscription:
        old = self._subs.get(subscriber_id)
        if old is not None:
            logger.info("Replacing subscription for %s in room %s", subscriber_id, self.room_id)
            old.close()
        sub = Subscription(self, subscriber_id)
        self._subs[subscriber_id] = sub
        return sub

    def _remove(self, sub: Subscription) -> None:
        if self._subs.get(sub.subscriber_id) is sub:
            del self._subs[sub.subscriber_id]

    @property
    def subscriber_ids(self) -> list[str]:
        return sorted(self._subs)

    def publish(self, envelope: Envelope) -> int:
        """Deliver to the recipient, or to every subscriber except the sender. Returns deliveries."""
        if envelope.recipient is not None:
            targets = [self._subs[envelope.recipient]] if envelope.recipient in self._subs else []
        else:
            targets = [s for sid, s in self._subs.items() if sid != envelope.sender]
        for sub in targets:
            sub.queue.put_nowait(envelope)
        self.sent += len(targets)
        if envelope.recipient is not None and not targets:
            logger.debug("No subscriber %s for %s", envelope.recipient, envelope.kind.value)
        return len(targets)

    def send_to_host(self, envelope: Envelope) -> int:
        return self.publish(envelope.model_copy(update={"recipient": HOST_ID}))

    def close(self) -> None:
        for sub in list(self._subs.values()):
            sub.close()
