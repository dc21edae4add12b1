"""
Kafka invalidation channel.

Every node consumes with its own consumer group so that each one sees
every invalidation. kafka-python is blocking; its calls run in the
default executor.
"""

import asyncio
import functools
from typing import Optional

import kafka
from kafka.errors import KafkaError

from shared.errors import NotificationError
from .base import InvalidationHandler, NotificationChannel, encode_message


class KafkaChannel(NotificationChannel):
    """Broadcasts invalidations over a Kafka topic."""

    channel_type = "kafka"

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str = "feature_flags_changes",
        node_id: Optional[str] = None,
        send_timeout: float = 10.0
    ):
        super().__init__(node_id)
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.send_timeout = send_timeout
        self.group_id = f"feature-flags-{self.node_id}"
        self.producer: Optional[kafka.KafkaProducer] = None
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self._consumer_task: Optional[asyncio.Task] = None

    async def start(self, handler: InvalidationHandler):
        """Start the producer, the consumer and the consume loop."""
        try:
            self.producer = kafka.KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda x: x.encode('utf-8'),
                key_serializer=lambda x: x.encode('utf-8') if x else None,
                acks=1,
                retries=3,
                linger_ms=0
            )
            self.consumer = kafka.KafkaConsumer(
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                auto_offset_reset='latest',
                enable_auto_commit=True,
                max_poll_records=100,
                session_timeout_ms=30000,
                heartbeat_interval_ms=10000
            )

            self._handler = handler
            self.running = True
            self._consumer_task = asyncio.create_task(self._consume_loop())

            self.logger.info("Kafka invalidation channel started", topic=self.topic, group_id=self.group_id)

        except Exception as e:
            self.logger.error("Failed to start Kafka invalidation channel", error=str(e))
            await self._close_clients(flush=False)
            raise NotificationError(self.channel_type, str(e)) from e

    async def stop(self):
        """Stop the consume loop and close clients."""
        self.running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        await self._close_clients()

        self.logger.info("Kafka invalidation channel stopped")

    async def _close_clients(self, flush: bool = True):
        loop = asyncio.get_running_loop()
        if self.producer:
            if flush:
                await loop.run_in_executor(None, self.producer.flush)
            await loop.run_in_executor(None, self.producer.close)
            self.producer = None
        if self.consumer:
            await loop.run_in_executor(None, self.consumer.close)
            self.consumer = None

    async def publish(self, flag_name: str):
        if not self.producer:
            raise NotificationError(self.channel_type, "Producer not started")

        loop = asyncio.get_running_loop()
        try:
            future = self.producer.send(
                self.topic,
                value=encode_message(self.node_id, flag_name),
                key=flag_name
            )
            record_metadata = await loop.run_in_executor(
                None, functools.partial(future.get, timeout=self.send_timeout)
            )
        except KafkaError as e:
            raise NotificationError(self.channel_type, str(e)) from e

        self.logger.debug(
            "Invalidation published",
            flag_name=flag_name,
            partition=record_metadata.partition,
            offset=record_metadata.offset
        )

    async def _consume_loop(self):
        """Main consumption loop."""
        loop = asyncio.get_running_loop()
        while self.running:
            try:
                message_batch = await loop.run_in_executor(
                    None, functools.partial(self.consumer.poll, timeout_ms=1000)
                )

                if not message_batch:
                    continue

                for _, messages in message_batch.items():
                    for message in messages:
                        await self._dispatch(message.value)

            except asyncio.CancelledError:
                break

            except KafkaError as e:
                self.logger.error("Kafka error in consume loop", error=str(e))
                await asyncio.sleep(5)

            except Exception as e:
                self.logger.error("Unexpected error in consume loop", error=str(e))
                await asyncio.sleep(1)
