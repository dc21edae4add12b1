"""
Gate evaluation engine.

Precedence, highest first:

1. an actor gate matching the item's identity decides outright;
2. any matching group gate that is disabled yields False;
3. any matching group gate that is enabled yields True;
4. otherwise the boolean gate decides, defaulting to False.

Evaluation is pure: it never touches the store or the cache.
"""

from dataclasses import dataclass
from typing import Any, Optional

from .capabilities import actor_id, group_names
from .models import Flag, Gate


class Reason:
    """Why an evaluation came out the way it did."""
    ACTOR = "actor"
    GROUP_DISABLED = "group_disabled"
    GROUP_ENABLED = "group_enabled"
    BOOLEAN = "boolean"
    DEFAULT = "default"


@dataclass(frozen=True)
class EvaluationResult:
    """Result of evaluating a flag."""
    flag_name: str
    enabled: bool
    reason: str
    gate: Optional[Gate] = None


def _evaluate_boolean(flag: Flag) -> EvaluationResult:
    gate = flag.boolean_gate
    if gate is None:
        return EvaluationResult(flag.name, False, Reason.DEFAULT)
    return EvaluationResult(flag.name, gate.enabled, Reason.BOOLEAN, gate)


def evaluate(flag: Flag, item: Any = None) -> EvaluationResult:
    """Resolve the effective value of ``flag`` for ``item``.

    ``item=None`` evaluates the flag globally.
    """
    if item is None:
        return _evaluate_boolean(flag)

    identity = actor_id(item)
    if identity is not None:
        for gate in flag.actor_gates:
            if gate.subject == identity:
                return EvaluationResult(flag.name, gate.enabled, Reason.ACTOR, gate)

    groups = group_names(item)
    if groups:
        matching = [gate for gate in flag.group_gates if gate.subject in groups]
        # Disabled groups are checked first so that they win over enabled ones
        for gate in matching:
            if not gate.enabled:
                return EvaluationResult(flag.name, False, Reason.GROUP_DISABLED, gate)
        for gate in matching:
            if gate.enabled:
                return EvaluationResult(flag.name, True, Reason.GROUP_ENABLED, gate)

    return _evaluate_boolean(flag)


def enabled(flag: Flag, item: Any = None) -> bool:
    """Shorthand for ``evaluate(flag, item).enabled``."""
    return evaluate(flag, item).enabled
