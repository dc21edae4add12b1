"""
Public API for querying and toggling feature flags.

Example::

    flags = FeatureFlags.from_config(FlagsConfig(store="redis"))
    await flags.start()

    await flags.enable("new_checkout", for_group="beta_testers")
    if await flags.enabled("new_checkout", for_=current_user):
        ...

Items passed as ``for_`` / ``for_actor`` implement ``Identity``
and/or ``GroupMembership`` (or are adapted with ``register_actor`` /
``register_groups``).
"""

from typing import Any, List, Optional

from shared.config import FlagsConfig, get_config
from shared.errors import ValidationError
from shared.logging import configure_logging, get_logger, set_node_id
from shared.metrics import FlagsMetrics
from .cache.cached_store import CachedFlagStore
from .factory import build_cache, build_channel, build_store
from .gates.capabilities import actor_id_for_write
from .gates.evaluator import evaluate
from .gates.models import Flag, Gate
from .persistence.base import FlagStore


class FeatureFlags:
    """Feature flag façade over a store and an optional cache layer.

    With a cache, reads go through it and writes refresh it; without
    one, every call hits the store. Store failures propagate as
    ``StoreError``; only a flag the store does not have evaluates to
    False by absence.
    """

    def __init__(
        self,
        store: FlagStore,
        cache: Optional[CachedFlagStore] = None,
        config: Optional[FlagsConfig] = None
    ):
        self.store = store
        self.cache = cache
        self.config = config
        self.logger = get_logger("flags.api")

    @classmethod
    def from_config(
        cls,
        config: Optional[FlagsConfig] = None,
        metrics: Optional[FlagsMetrics] = None
    ) -> "FeatureFlags":
        """Wire the store, channel and cache selected by ``config``."""
        config = config or get_config()
        configure_logging("flags", config.log_level)
        store = build_store(config)
        channel = build_channel(config) if config.cache_enabled else None
        cache = build_cache(config, store, channel, metrics)
        return cls(store, cache, config)

    async def start(self):
        """Connect the store, then subscribe the cache to invalidations."""
        await self.store.start()
        if self.cache is not None:
            set_node_id(self.cache.node_id)
            await self.cache.start()
        self.logger.info(
            "Feature flags started",
            store=self.store.backend_name,
            cache_enabled=self.cache is not None
        )

    async def stop(self):
        if self.cache is not None:
            await self.cache.stop()
        await self.store.stop()
        self.logger.info("Feature flags stopped")

    async def __aenter__(self) -> "FeatureFlags":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # Queries

    async def enabled(self, flag_name: str, for_: Any = None, timeout: Optional[float] = None) -> bool:
        """Whether ``flag_name`` is on, globally or for the item ``for_``.

        ``timeout`` overrides the store timeout for this read. On timeout a
        cached copy is returned if one exists, otherwise
        ``StoreTimeoutError`` is raised.
        """
        self._check_name(flag_name)
        flag = await self._lookup(flag_name, timeout)
        result = evaluate(flag, for_)
        self.logger.debug(
            "Flag evaluated",
            flag_name=flag_name,
            enabled=result.enabled,
            reason=result.reason
        )
        return result.enabled

    async def get_flag(self, flag_name: str) -> Flag:
        """Read the flag straight from the store; absent flags come back empty."""
        self._check_name(flag_name)
        flag = await self.store.get(flag_name)
        return flag if flag is not None else Flag.empty(flag_name)

    async def all_flags(self) -> List[Flag]:
        return await self.store.all_flags()

    async def all_flag_names(self) -> List[str]:
        return await self.store.all_flag_names()

    # Mutations

    async def enable(self, flag_name: str, for_actor: Any = None, for_group: Any = None) -> bool:
        """Turn the flag on globally, for one actor or for one group."""
        return await self._set(flag_name, True, for_actor, for_group)

    async def disable(self, flag_name: str, for_actor: Any = None, for_group: Any = None) -> bool:
        """Turn the flag off globally, for one actor or for one group."""
        return await self._set(flag_name, False, for_actor, for_group)

    async def clear(
        self,
        flag_name: str,
        for_actor: Any = None,
        for_group: Any = None,
        boolean: bool = False
    ) -> None:
        """Remove one gate, or the whole flag when no scope is given."""
        self._check_name(flag_name)
        self._check_scope(for_actor, for_group, boolean)

        if for_actor is not None:
            gate = Gate.actor(actor_id_for_write(for_actor), False)
        elif for_group is not None:
            gate = Gate.group(str(for_group), False)
        elif boolean:
            gate = Gate.boolean(False)
        else:
            await self._delete_flag(flag_name)
            self.logger.info("Flag cleared", flag_name=flag_name)
            return

        await self._delete_gate(flag_name, gate)
        self.logger.info("Gate cleared", flag_name=flag_name, kind=gate.kind.value, subject=gate.subject)

    async def _set(self, flag_name: str, value: bool, for_actor: Any, for_group: Any) -> bool:
        self._check_name(flag_name)
        self._check_scope(for_actor, for_group)

        if for_actor is not None:
            gate = Gate.actor(actor_id_for_write(for_actor), value)
            flag = await self._write(flag_name, gate)
            return evaluate(flag, for_actor).enabled

        if for_group is not None:
            await self._write(flag_name, Gate.group(str(for_group), value))
            return value

        flag = await self._write(flag_name, Gate.boolean(value))
        return evaluate(flag).enabled

    @staticmethod
    def _check_name(flag_name: str):
        if not isinstance(flag_name, str) or not flag_name:
            raise ValidationError("Flag name must be a non-empty string", {"flag_name": repr(flag_name)})

    @staticmethod
    def _check_scope(for_actor: Any, for_group: Any, boolean: bool = False):
        scopes = sum((for_actor is not None, for_group is not None, bool(boolean)))
        if scopes > 1:
            raise ValueError("Pass at most one of for_actor, for_group or boolean")

    # Store / cache routing

    async def _lookup(self, flag_name: str, timeout: Optional[float] = None) -> Flag:
        if self.cache is not None:
            return await self.cache.lookup(flag_name, timeout=timeout)
        flag = await self.store.get(flag_name, timeout=timeout)
        return flag if flag is not None else Flag.empty(flag_name)

    async def _write(self, flag_name: str, gate: Gate) -> Flag:
        if self.cache is not None:
            flag = await self.cache.put(flag_name, gate)
        else:
            flag = await self.store.upsert_gate(flag_name, gate)
        self.logger.info(
            "Gate written",
            flag_name=flag_name,
            kind=gate.kind.value,
            subject=gate.subject,
            enabled=gate.enabled
        )
        return flag

    async def _delete_gate(self, flag_name: str, gate: Gate) -> Flag:
        if self.cache is not None:
            return await self.cache.delete_gate(flag_name, gate)
        return await self.store.delete_gate(flag_name, gate)

    async def _delete_flag(self, flag_name: str) -> Flag:
        if self.cache is not None:
            return await self.cache.delete_flag(flag_name)
        return await self.store.delete_flag(flag_name)
