"""
Canonical workflow types (``fabshop_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  Budgets, service orders,
tasks and invoices each declare one ``Workflow``; services ask it whether a
transition is legal instead of branching on status strings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``(from_state, to_state)`` pairs are unique within a workflow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import product
from typing import Any, Iterable


def state_key(state: Any) -> str:
    """Plain string value of a state (enum members collapse to their value)."""
    return getattr(state, "value", state)


@dataclass(frozen=True)
class Guard:
    """A named precondition attached to a transition.

    Descriptive only: the owning service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    system_only: bool = False  # not reachable through manual status changes


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    _index: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.from_state}->{t.to_state} "
                    "references an unknown state"
                )
            key = (t.from_state, t.to_state)
            if key in self._index:
                raise ValueError(f"{self.name}: duplicate transition {key}")
            self._index[key] = t

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition between two states, if declared."""
        return self._index.get((state_key(from_state), state_key(to_state)))

    def targets(self, from_state: str, include_system: bool = False) -> frozenset[str]:
        """States reachable from ``from_state`` in one step."""
        return frozenset(
            t.to_state
            for t in self.transitions
            if t.from_state == state_key(from_state) and (include_system or not t.system_only)
        )


def fully_connected(
    states: Iterable[str],
    action: str,
    exclude_from: Iterable[str] = (),
    exclude_to: Iterable[str] = (),
    guards: dict[str, Guard] | None = None,
    system_only_targets: Iterable[str] = (),
) -> tuple[Transition, ...]:
    """
    Build the transition set for a permissive workflow.

    Every ordered pair of distinct states becomes a transition, minus the
    excluded sources and targets.  ``guards`` attaches a guard to every
    transition that enters the keyed state.
    """
    states = tuple(states)
    exclude_from = frozenset(exclude_from)
    exclude_to = frozenset(exclude_to)
    system_only_targets = frozenset(system_only_targets)
    guards = guards or {}
    return tuple(
        Transition(
            from_state=src,
            to_state=dst,
            action=action,
            guard=guards.get(dst),
            system_only=dst in system_only_targets,
        )
        for src, dst in product(states, states)
        if src != dst and src not in exclude_from and dst not in exclude_to
    )
