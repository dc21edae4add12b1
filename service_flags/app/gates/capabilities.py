"""
Capability lookups the evaluator uses to match actor and group gates.

Items opt in by implementing ``Identity`` (``flag_actor_id``) and/or
``GroupMembership`` (``flag_groups``). Types you do not own can be
adapted with ``register_actor`` / ``register_groups``; adapters are
resolved along the type's MRO and take precedence over the protocol
methods. ``str`` is registered as its own actor identity.
"""

import threading
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Protocol, runtime_checkable

from shared.errors import InvalidGateError


@runtime_checkable
class Identity(Protocol):
    """Items that can be targeted by actor gates."""

    def flag_actor_id(self) -> str: ...


@runtime_checkable
class GroupMembership(Protocol):
    """Items that belong to groups targeted by group gates."""

    def flag_groups(self) -> Iterable[str]: ...


ActorAdapter = Callable[[Any], Optional[str]]
GroupsAdapter = Callable[[Any], Iterable[str]]

_registry_lock = threading.Lock()
_actor_adapters: Dict[type, ActorAdapter] = {}
_group_adapters: Dict[type, GroupsAdapter] = {}


def register_actor(cls: type, adapter: ActorAdapter) -> None:
    """Teach the evaluator how to identify instances of ``cls``."""
    with _registry_lock:
        _actor_adapters[cls] = adapter


def register_groups(cls: type, adapter: GroupsAdapter) -> None:
    """Teach the evaluator which groups instances of ``cls`` belong to."""
    with _registry_lock:
        _group_adapters[cls] = adapter


def unregister(cls: type) -> None:
    """Remove both adapters for ``cls``, if any."""
    with _registry_lock:
        _actor_adapters.pop(cls, None)
        _group_adapters.pop(cls, None)


def _resolve(registry: Dict[type, Callable], item: Any) -> Optional[Callable]:
    for klass in type(item).__mro__:
        adapter = registry.get(klass)
        if adapter is not None:
            return adapter
    return None


def actor_id(item: Any) -> Optional[str]:
    """Return the item's actor identity, or None when it has none."""
    if item is None:
        return None

    adapter = _resolve(_actor_adapters, item)
    if adapter is not None:
        value = adapter(item)
    elif isinstance(item, Identity):
        value = item.flag_actor_id()
    else:
        return None

    if value is None or value == "":
        return None
    return str(value)


def group_names(item: Any) -> FrozenSet[str]:
    """Return the groups the item belongs to; empty when it supports none."""
    if item is None:
        return frozenset()

    adapter = _resolve(_group_adapters, item)
    if adapter is not None:
        groups = adapter(item)
    elif isinstance(item, GroupMembership):
        groups = item.flag_groups()
    else:
        return frozenset()

    if not groups:
        return frozenset()
    return frozenset(str(group) for group in groups)


def actor_id_for_write(item: Any) -> str:
    """Identity used when writing an actor gate; the item must have one."""
    value = actor_id(item)
    if value is None:
        raise InvalidGateError(
            f"{type(item).__name__} does not expose an actor identity",
            {"item_type": type(item).__name__}
        )
    return value


register_actor(str, lambda item: item)
