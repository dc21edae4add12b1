"""
Gate and flag data models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shared.errors import InvalidGateError


class GateKind(str, Enum):
    """Gate kinds."""
    BOOLEAN = "boolean"
    ACTOR = "actor"
    GROUP = "group"


GateKey = Tuple[GateKind, Optional[str]]


@dataclass(frozen=True)
class Gate:
    """A single rule contributing to a flag's effective value.

    Boolean gates carry no subject; actor and group gates must name the
    actor id or group they apply to.
    """
    kind: GateKind
    subject: Optional[str] = None
    enabled: bool = False

    def __post_init__(self):
        try:
            kind = GateKind(self.kind)
        except ValueError:
            raise InvalidGateError(
                f"Unknown gate kind: {self.kind!r}",
                {"kind": str(self.kind)}
            ) from None
        object.__setattr__(self, "kind", kind)

        if kind == GateKind.BOOLEAN:
            if self.subject is not None:
                raise InvalidGateError(
                    "Boolean gates do not take a subject",
                    {"subject": str(self.subject)}
                )
        elif self.subject is None or self.subject == "":
            raise InvalidGateError(
                f"{kind.value.capitalize()} gates require a subject",
                {"kind": kind.value}
            )
        elif not isinstance(self.subject, str):
            raise InvalidGateError(
                f"Gate subjects must be strings, got {type(self.subject).__name__}",
                {"kind": kind.value}
            )

        if not isinstance(self.enabled, bool):
            raise InvalidGateError(
                "Gate value must be a bool",
                {"enabled": repr(self.enabled)}
            )

    @classmethod
    def boolean(cls, enabled: bool) -> "Gate":
        return cls(GateKind.BOOLEAN, None, enabled)

    @classmethod
    def actor(cls, actor_id: str, enabled: bool) -> "Gate":
        return cls(GateKind.ACTOR, actor_id, enabled)

    @classmethod
    def group(cls, group: str, enabled: bool) -> "Gate":
        return cls(GateKind.GROUP, group, enabled)

    @property
    def key(self) -> GateKey:
        """Identity used to dedup gates inside a flag."""
        return (self.kind, self.subject)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "subject": self.subject, "enabled": self.enabled}


@dataclass(frozen=True, eq=False)
class Flag:
    """A named collection of gates, unique by gate key.

    Flags are immutable; ``merge`` and ``without`` return new instances.
    A flag with no gates is how an absent flag is represented.
    """
    name: str
    gates: Tuple[Gate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise InvalidGateError("Flag name must be a non-empty string", {"name": repr(self.name)})

        # Later gates replace earlier ones with the same key
        by_key: Dict[GateKey, Gate] = {}
        for gate in self.gates:
            by_key[gate.key] = gate
        object.__setattr__(self, "gates", tuple(by_key.values()))

    @classmethod
    def empty(cls, name: str) -> "Flag":
        return cls(name, ())

    @classmethod
    def from_gates(cls, name: str, gates: Iterable[Gate]) -> "Flag":
        return cls(name, tuple(gates))

    @property
    def is_empty(self) -> bool:
        return not self.gates

    @property
    def boolean_gate(self) -> Optional[Gate]:
        for gate in self.gates:
            if gate.kind == GateKind.BOOLEAN:
                return gate
        return None

    @property
    def actor_gates(self) -> List[Gate]:
        return [gate for gate in self.gates if gate.kind == GateKind.ACTOR]

    @property
    def group_gates(self) -> List[Gate]:
        return [gate for gate in self.gates if gate.kind == GateKind.GROUP]

    def get_gate(self, kind: GateKind, subject: Optional[str] = None) -> Optional[Gate]:
        """Find the gate stored under ``(kind, subject)``."""
        key = (GateKind(kind), subject)
        for gate in self.gates:
            if gate.key == key:
                return gate
        return None

    def merge(self, gate: Gate) -> "Flag":
        """Return a flag with ``gate`` replacing any gate with the same key."""
        kept = tuple(g for g in self.gates if g.key != gate.key)
        return Flag(self.name, kept + (gate,))

    def without(self, kind: GateKind, subject: Optional[str] = None) -> "Flag":
        """Return a flag without the gate stored under ``(kind, subject)``."""
        key = (GateKind(kind), subject)
        return Flag(self.name, tuple(g for g in self.gates if g.key != key))

    def __eq__(self, other: object) -> bool:
        # Gate order is irrelevant to a flag's meaning
        if not isinstance(other, Flag):
            return NotImplemented
        return self.name == other.name and set(self.gates) == set(other.gates)

    def __hash__(self) -> int:
        return hash((self.name, frozenset(self.gates)))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "gates": [gate.to_dict() for gate in self.gates]}
