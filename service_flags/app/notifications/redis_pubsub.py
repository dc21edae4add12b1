"""
Redis pub/sub invalidation channel.
"""

import asyncio
from typing import Optional

import redis.asyncio as redis

from shared.errors import NotificationError
from .base import InvalidationHandler, NotificationChannel, encode_message


class RedisPubSubChannel(NotificationChannel):
    """Broadcasts invalidations over a Redis pub/sub channel."""

    channel_type = "redis"

    def __init__(
        self,
        redis_url: str,
        channel: str = "feature_flags_changes",
        node_id: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        retry_delay: float = 1.0
    ):
        super().__init__(node_id)
        self.redis_url = redis_url
        self.channel = channel
        self.retry_delay = retry_delay
        self.redis: Optional[redis.Redis] = client
        self.pubsub = None
        self._listener_task: Optional[asyncio.Task] = None

    async def start(self, handler: InvalidationHandler):
        """Subscribe and start the listener task."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    health_check_interval=30
                )

            self.pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            await self.pubsub.subscribe(self.channel)

            self._handler = handler
            self.running = True
            self._listener_task = asyncio.create_task(self._listen_loop())

            self.logger.info("Subscribed to invalidation channel", channel=self.channel, node_id=self.node_id)

        except Exception as e:
            self.logger.error("Failed to subscribe to invalidation channel", channel=self.channel, error=str(e))
            await self._close_clients()
            raise NotificationError(self.channel_type, str(e)) from e

    async def stop(self):
        """Unsubscribe and stop the listener task."""
        self.running = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self.pubsub is not None:
            await self.pubsub.unsubscribe(self.channel)
        await self._close_clients()

        self.logger.info("Invalidation channel stopped", channel=self.channel)

    async def _close_clients(self):
        """Close the pub/sub connection and the client, whichever exist."""
        if self.pubsub is not None:
            try:
                await self.pubsub.aclose()
            except Exception as e:
                self.logger.warning("Error closing pub/sub connection", error=str(e))
            self.pubsub = None

        if self.redis is not None:
            try:
                await self.redis.aclose()
            except Exception as e:
                self.logger.warning("Error closing Redis client", error=str(e))
            self.redis = None

    async def publish(self, flag_name: str):
        if self.redis is None:
            raise NotificationError(self.channel_type, "Channel not started")
        receivers = await self.redis.publish(self.channel, encode_message(self.node_id, flag_name))
        self.logger.debug("Invalidation published", flag_name=flag_name, receivers=receivers)

    async def _listen_loop(self):
        """Main receive loop."""
        while self.running:
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                if message.get("type") != "message":
                    continue
                await self._dispatch(message.get("data"))

            except asyncio.CancelledError:
                break

            except Exception as e:
                # Messages lost while disconnected are covered by the cache TTL
                self.logger.error("Error in invalidation listener", error=str(e))
                await asyncio.sleep(self.retry_delay)
