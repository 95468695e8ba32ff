"""Fan-out backends: where a frame addressed to a user gets delivered.

The local backend writes straight into this process's registry. The Redis
backend publishes an envelope that every process (this one included)
receives on its pub/sub listener and delivers into its own registry, so a
user is reached regardless of which process holds their socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

    from marketplace_realtime.infra.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class FanOutBackend(ABC):
    """Delivery strategy for serialized frames."""

    name: str = "abstract"

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def start(self) -> None:  # noqa: B027
        """Acquire backend resources."""

    async def stop(self) -> None:  # noqa: B027
        """Release backend resources."""

    @abstractmethod
    async def send_to_user(self, user_id: str, text: str) -> int:
        """Deliver ``text`` to every connection of ``user_id``.

        Returns:
            Connections reached in this process (0 when delivery is deferred).
        """

    @abstractmethod
    async def broadcast(self, text: str, exclude_user_id: str | None = None) -> int:
        """Deliver ``text`` to every connected user except ``exclude_user_id``."""


class LocalFanOutBackend(FanOutBackend):
    """In-process delivery. Correct for a single server process."""

    name = "local"

    async def send_to_user(self, user_id: str, text: str) -> int:
        return self._registry.fan_out(user_id, text)

    async def broadcast(self, text: str, exclude_user_id: str | None = None) -> int:
        return self._registry.broadcast(text, exclude_user_id=exclude_user_id)


class RedisFanOutBackend(FanOutBackend):
    """Cross-process delivery over a single Redis pub/sub channel.

    Envelope published per frame::

        {"user_id": "<id or null>", "exclude_user_id": "<id or null>", "data": "<frame json>"}

    A null ``user_id`` means broadcast.

    If the subscription drops, the listener re-subscribes with exponential
    backoff. Until it is back, or when a publish fails, frames are delivered
    straight into the local registry so this process's sockets keep
    receiving them.
    """

    name = "redis"

    def __init__(
        self,
        registry: ConnectionRegistry,
        redis_client: Redis,
        channel: str = "ws:fanout",
        *,
        retry_delay: float = 0.5,
        retry_max_delay: float = 30.0,
    ) -> None:
        super().__init__(registry)
        self._redis = redis_client
        self._channel = channel
        self._retry_delay = retry_delay
        self._retry_max_delay = retry_max_delay
        self._pubsub: PubSub | None = None
        self._subscribed = False
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def listening(self) -> bool:
        """True while this process is subscribed to the fan-out channel."""
        return self._subscribed

    async def start(self) -> None:
        if self._listener_task is not None:
            return
        await self._subscribe()
        self._listener_task = asyncio.create_task(self._listen(), name="ws-fanout-listener")
        logger.info("Redis fan-out listener started", extra={"channel": self._channel})

    async def stop(self) -> None:
        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
            except RedisError as e:
                logger.warning(
                    "Failed to unsubscribe fan-out channel",
                    extra={"channel": self._channel, "error": str(e)},
                )
            await self._discard_pubsub()

        await self._redis.aclose()

    async def send_to_user(self, user_id: str, text: str) -> int:
        published = await self._publish({"user_id": user_id, "exclude_user_id": None, "data": text})
        if published and self._subscribed:
            return 0
        return self._registry.fan_out(user_id, text)

    async def broadcast(self, text: str, exclude_user_id: str | None = None) -> int:
        published = await self._publish(
            {"user_id": None, "exclude_user_id": exclude_user_id, "data": text}
        )
        if published and self._subscribed:
            return 0
        return self._registry.broadcast(text, exclude_user_id=exclude_user_id)

    def deliver(self, envelope: dict[str, Any]) -> int:
        """Deliver a received envelope into the local registry."""
        data = envelope["data"]
        user_id = envelope.get("user_id")
        if user_id is None:
            return self._registry.broadcast(data, exclude_user_id=envelope.get("exclude_user_id"))
        return self._registry.fan_out(user_id, data)

    async def _publish(self, envelope: dict[str, Any]) -> bool:
        try:
            await self._redis.publish(self._channel, json.dumps(envelope))
        except RedisError as e:
            logger.error(
                "Failed to publish fan-out envelope, delivering locally",
                extra={"channel": self._channel, "user_id": envelope["user_id"], "error": str(e)},
            )
            return False
        return True

    async def _subscribe(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._subscribed = True

    async def _discard_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        self._subscribed = False
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(
                "Closing dropped pub/sub connection failed",
                extra={"channel": self._channel, "error": str(e)},
            )

    async def _listen(self) -> None:
        delay = self._retry_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    logger.info(
                        "Redis fan-out listener resubscribed", extra={"channel": self._channel}
                    )
                    delay = self._retry_delay
                async for message in self._pubsub.listen():
                    if message["type"] != "message":
                        continue
                    self._handle(message["data"])
                # listen() ends only once the channel is unsubscribed
                self._subscribed = False
                return
            except RedisError as e:
                await self._discard_pubsub()
                logger.warning(
                    "Redis fan-out listener lost its subscription, retrying",
                    extra={"channel": self._channel, "error": str(e), "retry_in": delay},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry_max_delay)

    def _handle(self, raw: bytes | str) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            self.deliver(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                "Discarding malformed fan-out envelope",
                extra={"channel": self._channel, "error": str(e)},
            )


__all__ = ["FanOutBackend", "LocalFanOutBackend", "RedisFanOutBackend"]
