"""In-process stand-ins for the Kafka producer/consumer pair.

Order events are published through :class:`KafkaProducerStub`; anything in the
same process (other services in a local run, tests) can observe them with
:class:`KafkaConsumerStub`.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

Handler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class PublishedMessage:
    topic: str
    key: str | None
    value: dict[str, Any]


class _InMemoryBroker:
    """Topic fan-out shared by every stub in the process."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(topic, None)

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        # Handlers may unsubscribe while being called.
        for handler in list(self._subscribers.get(topic, [])):
            await handler(message)


_BROKER = _InMemoryBroker()


class KafkaProducerStub:
    """Producer with the connect/send/close surface of an aiokafka producer."""

    def __init__(self, *, bootstrap_servers: str | None = None, **_kwargs: Any) -> None:
        self.bootstrap_servers = bootstrap_servers
        self._connected = False
        self.published: list[PublishedMessage] = []

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def send(self, topic: str, value: dict[str, Any], *, key: str | None = None) -> None:
        if not self._connected:
            raise RuntimeError("Producer not connected")
        self.published.append(PublishedMessage(topic=topic, key=key, value=value))
        await _BROKER.publish(topic, value)

    async def close(self) -> None:
        self._connected = False


class KafkaConsumerStub:
    """Subscribes ``handler(topic, message)`` to the given topics while started."""

    def __init__(
        self,
        topics: Sequence[str],
        handler: Callable[[str, dict[str, Any]], Awaitable[None]],
    ) -> None:
        self._topics = list(topics)
        self._handler = handler
        self._registrations: list[tuple[str, Handler]] = []
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        for topic in self._topics:
            async def _callback(message: dict[str, Any], current_topic: str = topic) -> None:
                await self._handler(current_topic, message)

            _BROKER.subscribe(topic, _callback)
            self._registrations.append((topic, _callback))
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        for topic, callback in self._registrations:
            _BROKER.unsubscribe(topic, callback)
        self._registrations.clear()
        self._started = False
