"""
Feature flags core.

Evaluates named boolean flags, optionally for an actor or the groups it
belongs to, over a shared persistent store with a per-process cache:

- app.api: ``FeatureFlags`` façade (enabled / enable / disable / clear).
- app.gates: Gate and flag model, capabilities and evaluation engine.
- app.persistence: Store contract and Redis / PostgreSQL / memory backends.
- app.cache: Local TTL cache and the invalidation-aware cache layer.
- app.notifications: Redis pub/sub, Kafka and in-memory channels.

Guidelines:
- Evaluation is pure and synchronous; only store and channel I/O await.
- Store faults propagate, except a timed-out read with a cached copy;
  cache and channel faults never do.
"""

from .api import FeatureFlags
from .gates import Flag, Gate, GateKind, GroupMembership, Identity, register_actor, register_groups

__all__ = [
    "FeatureFlags",
    "Flag",
    "Gate",
    "GateKind",
    "GroupMembership",
    "Identity",
    "register_actor",
    "register_groups",
]
