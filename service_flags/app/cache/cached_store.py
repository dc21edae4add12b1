"""
Read-through flag cache kept coherent by broadcast invalidations.
"""

import asyncio
import functools
import time
from typing import Any, Callable, Dict, Optional, Set

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import StoreError, StoreTimeoutError
from shared.logging import get_logger
from shared.metrics import FlagsMetrics
from ..gates.models import Flag, Gate
from ..notifications.base import NotificationChannel, new_node_id
from ..persistence.base import FlagStore
from .local_cache import CacheEntry, LocalFlagCache


class CachedFlagStore:
    """Cache layer in front of a ``FlagStore``.

    Reads are served from the local cache while entries are younger
    than the TTL, and fetched from the store otherwise. Concurrent
    misses on one flag share a single in-flight fetch, so every waiter
    gets the same flag or the same error. Writes go to the store; the
    flag it returns replaces the writer's own entry and an invalidation
    is broadcast to the other nodes, which evict theirs.

    The cache is never allowed to make flag checks unavailable: local
    cache and channel faults are logged and bypassed. A store read that
    times out is answered with the last cached copy when one exists,
    however old. Every other store fault propagates.
    """

    def __init__(
        self,
        store: FlagStore,
        ttl: float = 900.0,
        channel: Optional[NotificationChannel] = None,
        metrics: Optional[FlagsMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
        cache: Optional[LocalFlagCache] = None,
        synchronous_invalidation: bool = False
    ):
        self.store = store
        self.cache = cache if cache is not None else LocalFlagCache(ttl, clock)
        self.channel = channel
        self.node_id = channel.node_id if channel else new_node_id()
        self.metrics = metrics or FlagsMetrics()
        self.synchronous_invalidation = synchronous_invalidation
        self.logger = get_logger("flags.cache")
        self.breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30.0, name="invalidation_publish")
        self._channel_ready = False
        self._pending: Set[asyncio.Task] = set()
        self._inflight: Dict[str, asyncio.Task] = {}

    async def start(self):
        """Subscribe to invalidations. A channel failure leaves the cache on TTL expiry alone."""
        if self.channel is None:
            return
        try:
            await self.channel.start(self._on_invalidation)
            self._channel_ready = True
            self.breaker.reset()
        except Exception as e:
            self.metrics.record_degraded("channel")
            self.logger.warning(
                "Invalidation channel unavailable, relying on TTL expiry",
                channel=self.channel.channel_type,
                ttl=self.cache.ttl,
                error=str(e)
            )

    async def stop(self):
        """Wait for pending broadcasts and close the channel."""
        await self.drain()
        if self.channel is not None and self._channel_ready:
            self._channel_ready = False
            try:
                await self.channel.stop()
            except Exception as e:
                self.logger.warning("Error stopping invalidation channel", error=str(e))

    async def drain(self):
        """Wait until every fire-and-forget broadcast has completed."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Read path

    async def lookup(self, flag_name: str, timeout: Optional[float] = None) -> Flag:
        """Return the flag, from cache when fresh. Absent flags come back empty.

        ``timeout`` bounds the store read started by this call; a caller
        joining a fetch already in flight waits on that fetch's limit.
        """
        entry = self._safe_get_fresh(flag_name)
        if entry is not None:
            self.metrics.record_lookup("hit")
            return entry.as_flag()

        fetch = self._inflight.get(flag_name)
        if fetch is None:
            fetch = asyncio.create_task(self._refresh(flag_name, timeout))
            self._inflight[flag_name] = fetch
            fetch.add_done_callback(functools.partial(self._fetch_done, flag_name))
        return await asyncio.shield(fetch)

    async def _refresh(self, flag_name: str, timeout: Optional[float]) -> Flag:
        try:
            flag = await self.store.get(flag_name, timeout=timeout)
        except StoreTimeoutError as e:
            self.metrics.record_store_error("get", type(e).__name__)
            stale = self._safe_get(flag_name)
            if stale is None:
                raise
            self.metrics.record_lookup("stale")
            self.logger.warning(
                "Serving stale flag after store timeout",
                flag_name=flag_name,
                age=stale.age(self.cache.clock()),
                error=str(e)
            )
            return stale.as_flag()
        except StoreError as e:
            self.metrics.record_store_error("get", type(e).__name__)
            raise

        self.metrics.record_lookup("miss")
        # An invalidation during the fetch detaches it; its result must not be cached
        if self._inflight.get(flag_name) is asyncio.current_task():
            self._safe_put(flag_name, flag)
        return flag if flag is not None else Flag.empty(flag_name)

    def _fetch_done(self, flag_name: str, task: asyncio.Task):
        if self._inflight.get(flag_name) is task:
            del self._inflight[flag_name]
        if not task.cancelled():
            # Retrieved by every waiter; mark it so an unawaited failure is not reported
            task.exception()

    # Write path

    async def put(self, flag_name: str, gate: Gate, timeout: Optional[float] = None) -> Flag:
        """Write one gate and return the resulting flag."""
        flag = await self._write("upsert_gate", self.store.upsert_gate(flag_name, gate, timeout=timeout))
        await self._after_write(flag_name, flag)
        return flag

    async def delete_gate(self, flag_name: str, gate: Gate, timeout: Optional[float] = None) -> Flag:
        """Remove one gate and return the resulting flag."""
        flag = await self._write("delete_gate", self.store.delete_gate(flag_name, gate, timeout=timeout))
        await self._after_write(flag_name, flag)
        return flag

    async def delete_flag(self, flag_name: str, timeout: Optional[float] = None) -> Flag:
        """Remove the whole flag."""
        flag = await self._write("delete_flag", self.store.delete_flag(flag_name, timeout=timeout))
        await self._after_write(flag_name, flag)
        return flag

    async def _write(self, operation: str, call) -> Flag:
        try:
            return await call
        except StoreError as e:
            self.metrics.record_store_error(operation, type(e).__name__)
            raise

    async def _after_write(self, flag_name: str, flag: Flag):
        # Detach any in-flight read first so it cannot overwrite our copy
        self._inflight.pop(flag_name, None)
        self._safe_put(flag_name, flag)

        if self.channel is None or not self._channel_ready:
            return
        if self.synchronous_invalidation:
            await self._publish(flag_name)
            return

        task = asyncio.create_task(self._publish(flag_name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, flag_name: str):
        if self.channel is None or not self._channel_ready:
            return
        try:
            await self.breaker.call(self.channel.publish, flag_name)
            self.metrics.record_invalidation("published")
        except CircuitBreakerOpenException:
            self.metrics.record_degraded("channel")
            self.logger.debug("Invalidation publish skipped, circuit open", flag_name=flag_name)
        except Exception as e:
            self.metrics.record_degraded("channel")
            self.logger.warning("Failed to publish invalidation", flag_name=flag_name, error=str(e))

    # Receive path

    async def _on_invalidation(self, node_id: str, flag_name: str):
        if node_id == self.node_id:
            return
        evicted = self.invalidate(flag_name)
        self.metrics.record_invalidation("received")
        self.logger.debug("Invalidation received", flag_name=flag_name, origin=node_id, evicted=evicted)

    def invalidate(self, flag_name: str) -> bool:
        """Evict one flag locally."""
        self._inflight.pop(flag_name, None)
        return self._safe_invalidate(flag_name)

    def flush(self):
        """Evict every flag locally."""
        self._inflight.clear()
        try:
            self.cache.flush()
        except Exception as e:
            self._cache_fault("flush", None, e)

    def stats(self) -> Dict[str, Any]:
        """Cache statistics."""
        return {
            "node_id": self.node_id,
            "entries": len(self.cache),
            "ttl": self.cache.ttl,
            "hits": self.metrics.value("flag_cache_lookups_total", result="hit"),
            "misses": self.metrics.value("flag_cache_lookups_total", result="miss"),
            "stale": self.metrics.value("flag_cache_lookups_total", result="stale"),
            "inflight_fetches": len(self._inflight),
            "channel": self.channel.channel_type if self.channel else None,
            "channel_ready": self._channel_ready,
            "pending_broadcasts": len(self._pending),
            "publish_breaker": self.breaker.get_state(),
        }

    # Local cache access; every fault is logged and treated as a miss

    def _cache_fault(self, operation: str, flag_name: Optional[str], error: Exception):
        self.metrics.record_degraded("cache")
        self.logger.warning("Local cache fault, falling through to store", operation=operation, flag_name=flag_name, error=str(error))

    def _safe_get_fresh(self, flag_name: str) -> Optional[CacheEntry]:
        try:
            return self.cache.get_fresh(flag_name)
        except Exception as e:
            self._cache_fault("get_fresh", flag_name, e)
            return None

    def _safe_get(self, flag_name: str) -> Optional[CacheEntry]:
        try:
            return self.cache.get(flag_name)
        except Exception as e:
            self._cache_fault("get", flag_name, e)
            return None

    def _safe_put(self, flag_name: str, flag: Optional[Flag]):
        try:
            self.cache.put(flag_name, flag)
        except Exception as e:
            self._cache_fault("put", flag_name, e)

    def _safe_invalidate(self, flag_name: str) -> bool:
        try:
            return self.cache.invalidate(flag_name)
        except Exception as e:
            self._cache_fault("invalidate", flag_name, e)
            return False
