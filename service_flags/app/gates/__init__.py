"""
Gates package.

Defines the gate/flag model and the evaluation engine. The engine is a
set of pure functions over an already-fetched ``Flag``; it resolves
actor overrides first, then disabled groups, then enabled groups, and
finally the boolean gate.

Modules of interest:
- models: Gate, GateKind and Flag.
- capabilities: Identity / GroupMembership protocols and type adapters.
- evaluator: The precedence algorithm.
"""

from .capabilities import (
    GroupMembership,
    Identity,
    actor_id,
    group_names,
    register_actor,
    register_groups,
    unregister,
)
from .evaluator import EvaluationResult, Reason, enabled, evaluate
from .models import Flag, Gate, GateKind

__all__ = [
    "EvaluationResult",
    "Flag",
    "Gate",
    "GateKind",
    "GroupMembership",
    "Identity",
    "Reason",
    "actor_id",
    "enabled",
    "evaluate",
    "group_names",
    "register_actor",
    "register_groups",
    "unregister",
]
