"""
Invalidation channels.

Carry ``"<node_id>:<flag_name>"`` messages between processes that
share a flag store so that each can evict its cached copy.
"""

from .base import (
    InMemoryChannel,
    InMemoryNotificationBus,
    InvalidationHandler,
    NotificationChannel,
    decode_message,
    encode_message,
    new_node_id,
)
from .kafka_channel import KafkaChannel
from .redis_pubsub import RedisPubSubChannel

__all__ = [
    "InMemoryChannel",
    "InMemoryNotificationBus",
    "InvalidationHandler",
    "KafkaChannel",
    "NotificationChannel",
    "RedisPubSubChannel",
    "decode_message",
    "encode_message",
    "new_node_id",
]
