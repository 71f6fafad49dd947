"""
Canonical workflow types (``mes_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines (material handover,
disposal, return).  Guard, Transition, Workflow and Actor are defined once
here and shared by every workflow service.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition exists per ``(from_state, action)`` pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the workflow executor does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``allowed_roles`` empty means any authenticated actor may fire it.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    allowed_roles: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state} "
                "is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references "
                    f"unknown state ({t.from_state} -> {t.to_state})"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition for {key}"
                )
            seen.add(key)

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def with_role_grants(self, grants: dict[str, frozenset[str]]) -> Workflow:
        """Return a copy whose transitions carry roles granted per action."""
        transitions = tuple(
            replace(t, allowed_roles=grants[t.action]) if t.action in grants else t
            for t in self.transitions
        )
        return replace(self, transitions=transitions)


@dataclass(frozen=True)
class Actor:
    """The user performing a workflow action, with the roles they hold."""
    actor_id: int
    name: str = ""
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, roles: frozenset[str]) -> bool:
        return bool(self.roles & roles)
