"""
Unit tests for invalidation channels.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kafka.errors import KafkaError

from service_flags.app.notifications.base import (
    InMemoryChannel, InMemoryNotificationBus, decode_message, encode_message
)
from service_flags.app.notifications.kafka_channel import KafkaChannel
from service_flags.app.notifications.redis_pubsub import RedisPubSubChannel
from shared.errors import NotificationError


class Recorder:
    """Invalidation handler that records what it receives."""

    def __init__(self):
        self.calls = []
        self.received = asyncio.Event()

    async def __call__(self, node_id, flag_name):
        self.calls.append((node_id, flag_name))
        self.received.set()


class TestMessageFormat:
    """Test cases for the invalidation payload."""

    def test_encode(self):
        """Test payload layout."""
        assert encode_message("abc123", "checkout") == "abc123:checkout"

    def test_decode(self):
        """Test decoding str and bytes payloads."""
        assert decode_message("abc123:checkout") == ("abc123", "checkout")
        assert decode_message(b"abc123:checkout") == ("abc123", "checkout")

    def test_decode_flag_name_with_colon(self):
        """Test only the first colon separates the node id."""
        assert decode_message("abc123:billing:v2") == ("abc123", "billing:v2")

    @pytest.mark.parametrize("payload", ["no-separator", ":checkout", "abc123:", 42])
    def test_decode_malformed(self, payload):
        """Test malformed payloads are rejected."""
        with pytest.raises(NotificationError):
            decode_message(payload)


class TestInMemoryChannel:
    """Test cases for the in-memory bus and channel."""

    @pytest.fixture
    def bus(self):
        return InMemoryNotificationBus()

    @pytest.mark.asyncio
    async def test_fan_out(self, bus):
        """Test every attached channel receives a broadcast."""
        sender, receiver = InMemoryChannel(bus, node_id="a"), InMemoryChannel(bus, node_id="b")
        sender_log, receiver_log = Recorder(), Recorder()
        await sender.start(sender_log)
        await receiver.start(receiver_log)

        await sender.publish("checkout")

        assert receiver_log.calls == [("a", "checkout")]
        # Filtering own messages is the receiver's business
        assert sender_log.calls == [("a", "checkout")]
        assert bus.published == ["a:checkout"]

    @pytest.mark.asyncio
    async def test_dropped_messages(self, bus):
        """Test a lossy bus records but does not deliver."""
        sender, receiver = InMemoryChannel(bus), InMemoryChannel(bus)
        log = Recorder()
        await sender.start(Recorder())
        await receiver.start(log)
        bus.drop_messages = True

        await sender.publish("checkout")

        assert log.calls == []
        assert len(bus.published) == 1

    @pytest.mark.asyncio
    async def test_publish_before_start(self, bus):
        """Test publishing on a stopped channel fails."""
        channel = InMemoryChannel(bus)

        with pytest.raises(NotificationError):
            await channel.publish("checkout")

    @pytest.mark.asyncio
    async def test_stop_detaches(self, bus):
        """Test stopped channels receive nothing."""
        sender, receiver = InMemoryChannel(bus), InMemoryChannel(bus)
        log = Recorder()
        await sender.start(Recorder())
        await receiver.start(log)
        await receiver.stop()

        await sender.publish("checkout")

        assert log.calls == []

    @pytest.mark.asyncio
    async def test_handler_errors_contained(self, bus):
        """Test a failing handler does not break the publisher."""
        sender, receiver = InMemoryChannel(bus), InMemoryChannel(bus)
        await sender.start(Recorder())
        await receiver.start(AsyncMock(side_effect=RuntimeError("boom")))

        await sender.publish("checkout")

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, bus):
        """Test malformed payloads never reach the handler."""
        channel = InMemoryChannel(bus)
        log = Recorder()
        await channel.start(log)

        await bus.broadcast("garbage")

        assert log.calls == []


class TestRedisPubSubChannel:
    """Test cases for RedisPubSubChannel."""

    @pytest.fixture
    def mock_pubsub(self):
        """Create mock pub/sub connection."""
        async def idle(**kwargs):
            await asyncio.sleep(0.01)
            return None

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.get_message = AsyncMock(side_effect=idle)
        return pubsub

    @pytest.fixture
    def mock_redis(self, mock_pubsub):
        """Create mock Redis client."""
        client = MagicMock()
        client.pubsub = MagicMock(return_value=mock_pubsub)
        client.publish = AsyncMock(return_value=2)
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def channel(self, mock_redis):
        return RedisPubSubChannel("redis://localhost:6379/0", channel="ff", node_id="node-a", client=mock_redis)

    @pytest.mark.asyncio
    async def test_start_subscribes(self, channel, mock_pubsub):
        """Test start subscribes to the channel."""
        await channel.start(Recorder())

        mock_pubsub.subscribe.assert_awaited_once_with("ff")
        assert channel.running is True
        await channel.stop()

    @pytest.mark.asyncio
    async def test_start_failure(self, channel, mock_pubsub, mock_redis):
        """Test subscribe failures surface as NotificationError and close the client."""
        mock_pubsub.subscribe.side_effect = ConnectionError("refused")

        with pytest.raises(NotificationError):
            await channel.start(Recorder())

        mock_pubsub.aclose.assert_awaited_once()
        mock_redis.aclose.assert_awaited_once()
        assert channel.redis is None

    @pytest.mark.asyncio
    async def test_publish(self, channel, mock_redis):
        """Test publishing the encoded payload."""
        await channel.start(Recorder())

        await channel.publish("checkout")

        mock_redis.publish.assert_awaited_once_with("ff", "node-a:checkout")
        await channel.stop()

    @pytest.mark.asyncio
    async def test_publish_before_start(self):
        """Test publishing without a client fails."""
        channel = RedisPubSubChannel("redis://localhost:6379/0")

        with pytest.raises(NotificationError):
            await channel.publish("checkout")

    @pytest.mark.asyncio
    async def test_listener_dispatches(self, channel, mock_pubsub):
        """Test received messages reach the handler."""
        messages = [
            {"type": "message", "data": "node-b:checkout"},
            {"type": "pmessage", "data": "node-b:ignored"},
        ]

        async def next_message(**kwargs):
            if messages:
                return messages.pop(0)
            await asyncio.sleep(0.01)
            return None

        mock_pubsub.get_message.side_effect = next_message
        log = Recorder()
        await channel.start(log)

        await asyncio.wait_for(log.received.wait(), timeout=1)
        await channel.stop()

        assert log.calls == [("node-b", "checkout")]

    @pytest.mark.asyncio
    async def test_stop_releases_connections(self, channel, mock_pubsub, mock_redis):
        """Test stop unsubscribes and closes."""
        await channel.start(Recorder())

        await channel.stop()

        mock_pubsub.unsubscribe.assert_awaited_once_with("ff")
        mock_pubsub.aclose.assert_awaited_once()
        mock_redis.aclose.assert_awaited_once()
        assert channel.running is False


class TestKafkaChannel:
    """Test cases for KafkaChannel."""

    @pytest.fixture
    def mock_producer(self):
        """Create mock producer."""
        producer = MagicMock()
        future = MagicMock()
        future.get.return_value = MagicMock(partition=0, offset=10)
        producer.send.return_value = future
        return producer

    @pytest.fixture
    def mock_consumer(self):
        """Create mock consumer."""
        consumer = MagicMock()
        consumer.poll.return_value = {}
        return consumer

    @pytest.fixture
    def channel(self):
        return KafkaChannel("localhost:9092", topic="ff", node_id="node-a")

    @pytest.mark.asyncio
    async def test_start_and_publish(self, channel, mock_producer, mock_consumer):
        """Test publishing through the producer."""
        with patch("kafka.KafkaProducer", return_value=mock_producer), \
             patch("kafka.KafkaConsumer", return_value=mock_consumer) as consumer_cls:
            await channel.start(Recorder())

        assert consumer_cls.call_args[0][0] == "ff"
        assert consumer_cls.call_args[1]["group_id"] == "feature-flags-node-a"

        await channel.publish("checkout")

        mock_producer.send.assert_called_once_with("ff", value="node-a:checkout", key="checkout")
        await channel.stop()
        mock_producer.close.assert_called_once()
        mock_consumer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_publish_failure(self, channel, mock_producer, mock_consumer):
        """Test producer errors surface as NotificationError."""
        mock_producer.send.return_value.get.side_effect = KafkaError("leader not available")

        with patch("kafka.KafkaProducer", return_value=mock_producer), \
             patch("kafka.KafkaConsumer", return_value=mock_consumer):
            await channel.start(Recorder())

        with pytest.raises(NotificationError):
            await channel.publish("checkout")
        await channel.stop()

    @pytest.mark.asyncio
    async def test_publish_before_start(self, channel):
        """Test publishing without a producer fails."""
        with pytest.raises(NotificationError):
            await channel.publish("checkout")

    @pytest.mark.asyncio
    async def test_consume_dispatches(self, channel, mock_producer, mock_consumer):
        """Test consumed records reach the handler."""
        record = MagicMock(value=b"node-b:checkout")
        batches = [{"ff-0": [record]}]
        mock_consumer.poll.side_effect = lambda **kwargs: batches.pop(0) if batches else {}
        log = Recorder()

        with patch("kafka.KafkaProducer", return_value=mock_producer), \
             patch("kafka.KafkaConsumer", return_value=mock_consumer):
            await channel.start(log)

        await asyncio.wait_for(log.received.wait(), timeout=1)
        await channel.stop()

        assert log.calls == [("node-b", "checkout")]

    @pytest.mark.asyncio
    async def test_start_failure(self, channel):
        """Test broker failures surface as NotificationError."""
        with patch("kafka.KafkaProducer", side_effect=KafkaError("no brokers")):
            with pytest.raises(NotificationError):
                await channel.start(Recorder())

    @pytest.mark.asyncio
    async def test_consumer_failure_closes_producer(self, channel, mock_producer):
        """Test a consumer that cannot connect does not leave the producer open."""
        with patch("kafka.KafkaProducer", return_value=mock_producer), \
             patch("kafka.KafkaConsumer", side_effect=KafkaError("no brokers")):
            with pytest.raises(NotificationError):
                await channel.start(Recorder())

        mock_producer.close.assert_called_once()
        mock_producer.flush.assert_not_called()
        assert channel.producer is None
