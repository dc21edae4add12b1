"""
Builds stores, channels and caches from a ``FlagsConfig``.
"""

from typing import Optional

from shared.config import FlagsConfig
from shared.metrics import FlagsMetrics
from .cache.cached_store import CachedFlagStore
from .notifications.base import NotificationChannel, new_node_id
from .notifications.kafka_channel import KafkaChannel
from .notifications.redis_pubsub import RedisPubSubChannel
from .persistence.base import FlagStore
from .persistence.memory import InMemoryFlagStore
from .persistence.postgres import PostgresFlagStore
from .persistence.redis_store import RedisFlagStore


def build_store(config: FlagsConfig) -> FlagStore:
    """Instantiate the configured persistent store (not started)."""
    if config.store == "redis":
        return RedisFlagStore(
            config.redis_url,
            key_prefix=config.redis_key_prefix,
            timeout=config.store_timeout
        )
    if config.store == "postgres":
        return PostgresFlagStore(config.postgres_dsn, timeout=config.store_timeout)
    if config.store == "memory":
        return InMemoryFlagStore(timeout=config.store_timeout)
    raise ValueError(f"Unknown store backend: {config.store}")


def build_channel(config: FlagsConfig, node_id: Optional[str] = None) -> Optional[NotificationChannel]:
    """Instantiate the configured invalidation channel, or None."""
    node_id = node_id or new_node_id()
    if config.notifications == "none":
        return None
    if config.notifications == "redis":
        return RedisPubSubChannel(
            config.redis_url,
            channel=config.notifications_channel,
            node_id=node_id
        )
    if config.notifications == "kafka":
        return KafkaChannel(
            config.kafka_bootstrap,
            topic=config.notifications_channel,
            node_id=node_id
        )
    raise ValueError(f"Unknown notification channel: {config.notifications}")


def build_cache(
    config: FlagsConfig,
    store: FlagStore,
    channel: Optional[NotificationChannel] = None,
    metrics: Optional[FlagsMetrics] = None
) -> Optional[CachedFlagStore]:
    """Wrap ``store`` in a cache layer, or return None in no-cache mode."""
    if not config.cache_enabled:
        return None
    return CachedFlagStore(
        store,
        ttl=config.cache_ttl,
        channel=channel,
        metrics=metrics,
        synchronous_invalidation=config.notifications_synchronous
    )
