"""
Redis persistence layer for flags.

Each flag is a hash at ``<prefix>:<flag_name>`` whose fields are gate
keys (``boolean``, ``actor/<id>``, ``group/<name>``) and whose values
are ``"true"`` or ``"false"``. The set at ``<prefix>`` lists every flag
name ever written. HSET on distinct fields never clobbers other fields,
which is what keeps concurrent upserts of different gates lossless.
"""

from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from shared.errors import CorruptRecordError, StoreUnavailableError
from ..gates.models import Flag, Gate, GateKind
from .base import FlagStore


def encode_gate(gate: Gate) -> Tuple[str, str]:
    """Gate -> (hash field, hash value)."""
    value = "true" if gate.enabled else "false"
    if gate.kind == GateKind.BOOLEAN:
        return "boolean", value
    return f"{gate.kind.value}/{gate.subject}", value


def decode_gate(flag_name: str, field: Any, value: Any) -> Gate:
    """(hash field, hash value) -> Gate; raises CorruptRecordError on garbage."""
    if isinstance(field, bytes):
        field = field.decode("utf-8")
    if isinstance(value, bytes):
        value = value.decode("utf-8")

    if value == "true":
        enabled = True
    elif value == "false":
        enabled = False
    else:
        raise CorruptRecordError(
            f"Invalid gate value for flag '{flag_name}'",
            {"flag_name": flag_name, "field": field, "value": value}
        )

    if field == "boolean":
        return Gate.boolean(enabled)

    kind, sep, subject = field.partition("/")
    if not sep or kind not in (GateKind.ACTOR.value, GateKind.GROUP.value) or not subject:
        raise CorruptRecordError(
            f"Invalid gate field for flag '{flag_name}'",
            {"flag_name": flag_name, "field": field}
        )
    return Gate(GateKind(kind), subject, enabled)


def decode_flag(flag_name: str, data: Dict[Any, Any]) -> Flag:
    return Flag.from_gates(flag_name, (decode_gate(flag_name, f, v) for f, v in data.items()))


class RedisFlagStore(FlagStore):
    """Redis-backed flag store (reference backend)."""

    backend_name = "redis"

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "feature_flags",
        timeout: Optional[float] = 5.0,
        client: Optional[redis.Redis] = None
    ):
        super().__init__(timeout)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis store."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            await self.redis.ping()

            self.logger.info("Redis flag store started", key_prefix=self.key_prefix)

        except Exception as e:
            self.logger.error("Failed to start Redis flag store", error=str(e))
            raise StoreUnavailableError(f"Redis start failed: {e}") from e

    async def stop(self):
        """Stop the Redis store."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis flag store stopped")

    def _flag_key(self, flag_name: str) -> str:
        return f"{self.key_prefix}:{flag_name}"

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise StoreUnavailableError("Redis flag store not started")
        return self.redis

    async def _get(self, flag_name: str) -> Optional[Flag]:
        data = await self._client().hgetall(self._flag_key(flag_name))
        if not data:
            return None
        return decode_flag(flag_name, data)

    async def _upsert_gate(self, flag_name: str, gate: Gate) -> Flag:
        field, value = encode_gate(gate)
        key = self._flag_key(flag_name)

        # MULTI/EXEC so the read-back reflects exactly this write plus prior ones
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.hset(key, field, value)
            pipe.sadd(self.key_prefix, flag_name)
            pipe.hgetall(key)
            _, _, data = await pipe.execute()

        self.logger.debug("Gate written", flag_name=flag_name, field=field, value=value)
        return decode_flag(flag_name, data)

    async def _delete_gate(self, flag_name: str, gate: Gate) -> Flag:
        field, _ = encode_gate(gate)
        key = self._flag_key(flag_name)

        async with self._client().pipeline(transaction=True) as pipe:
            pipe.hdel(key, field)
            pipe.hgetall(key)
            _, data = await pipe.execute()

        self.logger.debug("Gate deleted", flag_name=flag_name, field=field)
        return decode_flag(flag_name, data or {})

    async def _delete_flag(self, flag_name: str) -> Flag:
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.delete(self._flag_key(flag_name))
            pipe.srem(self.key_prefix, flag_name)
            await pipe.execute()

        self.logger.info("Flag deleted", flag_name=flag_name)
        return Flag.empty(flag_name)

    async def _all_flag_names(self) -> List[str]:
        names = await self._client().smembers(self.key_prefix)
        return sorted(n.decode("utf-8") if isinstance(n, bytes) else n for n in names)

    async def _all_flags(self) -> List[Flag]:
        names = await self._all_flag_names()
        if not names:
            return []

        async with self._client().pipeline(transaction=False) as pipe:
            for name in names:
                pipe.hgetall(self._flag_key(name))
            results = await pipe.execute()

        return [decode_flag(name, data or {}) for name, data in zip(names, results)]

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._client().ping()
            return True
        except Exception:
            return False
