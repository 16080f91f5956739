"""
Canonical workflow types (``stock_kernel.domain.workflow``).

Pure value objects describing document state machines.  Receipts,
transfers and counts each declare a ``Workflow``; their services consult
it before every status change so that no code path can skip a state or
leave a terminal one.

Invariants enforced
-------------------
* ``initial_state`` is a member of ``states``.
* Transitions reference only states in ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named precondition checked by the owning service before a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A legal state change triggered by ``action``.

    ``mutates_stock=True`` marks transitions whose commit phase touches
    the StockLevelStore and appends movements.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    mutates_stock: bool = False


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
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} has outgoing transition"
                )

    def find_transition(
        self, from_state: str, action: str, to_state: str | None = None,
    ) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if legal."""
        for t in self.transitions:
            if t.from_state != from_state or t.action != action:
                continue
            if to_state is None or t.to_state == to_state:
                return t
        return None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)
