"""
Canonical workflow types (``invoice_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  ``Guard``, ``Transition`` and
``Workflow`` are defined once and consumed by the status rule engine, which
reads the per-transition policy hooks (guard, reason, approval roles) rather
than hard-coding them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Every state in ``terminal_states`` has no outgoing transitions.
* At most one transition per (from_state, to_state) pair.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the rule engine does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``requires_reason=True`` means the caller must supply a
    non-empty reason.  ``requires_approval=True`` means only
    ``approval_roles`` may fire it without an explicit override.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    requires_reason: bool = False
    requires_approval: bool = False
    approval_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated on construction.
    Guarantees: lookups never mutate; the same instance can be shared
    process-wide.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state} not in states"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state}->{t.to_state} "
                    "references an unknown state"
                )
            if (t.from_state, t.to_state) in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition {t.from_state}->{t.to_state}"
                )
            seen.add((t.from_state, t.to_state))
        for state in self.terminal_states:
            if any(t.from_state == state for t in self.transitions):
                raise ValueError(
                    f"Workflow {self.name}: terminal state {state} has outgoing transitions"
                )

    def successors(self, state: str) -> tuple[str, ...]:
        """Direct successors of ``state`` in declaration order."""
        return tuple(t.to_state for t in self.transitions if t.from_state == state)

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
