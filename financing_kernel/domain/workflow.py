"""
Canonical workflow types (``financing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  Guard, Transition and
Workflow are defined once here; each module declares its own lifecycle
table (invoice, offer, bid, disbursement, repayment) with them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* Several transitions may share (from_state, action); their guards pick
  the target, first match wins.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``moves_money=True`` marks transitions that record a disbursement.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    moves_money: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; validated at construction.
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
                f"{self.name}: initial state {self.initial_state} not in states"
            )
        for state in self.terminal_states:
            if state not in self.states:
                raise ValueError(f"{self.name}: terminal state {state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state} has outgoing {t.action}"
                )

    def candidates(self, from_state: str, action: str) -> tuple[Transition, ...]:
        """Transitions for (from_state, action), in declaration order."""
        return tuple(
            t for t in self.transitions
            if t.from_state == from_state and t.action == action
        )

    def actions_from(self, state: str) -> tuple[str, ...]:
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
