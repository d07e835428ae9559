import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

TOPIC_PREFIX = "public/trees/"


def topic_for(did: str) -> str:
    return TOPIC_PREFIX + did


class Subscription:
    def __init__(self, bus: "TopicBus", topic: str, callback: Callable[[Any], Any]) -> None:
        self.bus = bus
        self.topic = topic
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.bus._remove(self)


class TopicBus:
    """In-process topic channel. Async callbacks are awaited in subscription order.

    A failing subscriber is logged and skipped; it never reaches the publisher.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, List[Subscription]] = {}

    def subscribe(self, topic: str, callback: Callable[[Any], Any]) -> Subscription:
        sub = Subscription(self, topic, callback)
        self._subs.setdefault(topic, []).append(sub)
        logger.debug("subscribed to %s", topic)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.topic, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subs.pop(sub.topic, None)

    def subscribers(self, topic: str) -> int:
        return len(self._subs.get(topic, []))

    async def publish(self, topic: str, message: Any) -> int:
        delivered = 0
        for sub in list(self._subs.get(topic, [])):
            if not sub.active:
                continue
            try:
                result = sub.callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("subscriber on %s failed", topic)
                continue
            delivered += 1
        return delivered


class EventHook:
    """Listener registry for a single named event; add() returns a cancellable handle."""

    def __init__(self) -> None:
        self._bus = TopicBus()

    def add(self, callback: Callable[[Any], Any]) -> Subscription:
        return self._bus.subscribe("event", callback)

    async def fire(self, payload: Any = None) -> int:
        return await self._bus.publish("event", payload)

    async def wait(self, timeout: Optional[float] = None) -> Any:
        loop = asyncio.get_running_loop()
        fut = loop.create_future()

        def _done(payload):
            if not fut.done():
                fut.set_result(payload)

        sub = self.add(_done)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            sub.cancel()
