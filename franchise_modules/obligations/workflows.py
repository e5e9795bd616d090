"""
Obligation Workflows.

State machine for royalty, revenue and transaction obligations.  Checked
by ``ObligationService`` before every mutation.  Transitions whose
from_state equals to_state are in-place actions (late fee, adjustment,
attachment) that are only legal from the listed states.

``overdue`` appears as a state because actions are checked against the
derived status; it is never persisted.
"""

from dataclasses import dataclass

from franchise_kernel.logging_config import get_logger

logger = get_logger("modules.obligations.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    posts_entry: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def transition_for(self, state: str, action: str) -> Transition | None:
        """The transition for ``action`` out of ``state``, if one exists."""
        for transition in self.transitions:
            if transition.from_state == state and transition.action == action:
                return transition
        return None

    def source_states(self, action: str) -> tuple[str, ...]:
        return tuple(t.from_state for t in self.transitions if t.action == action)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

NO_LATE_FEE_APPLIED = Guard(
    name="no_late_fee_applied",
    description="Late fee has not been charged yet",
)

PAYMENT_COMPLETED = Guard(
    name="payment_completed",
    description="Payment completed and record is not itself a reversal",
)


# -----------------------------------------------------------------------------
# Obligation Workflow
# -----------------------------------------------------------------------------

_ANY_STATE = ("draft", "pending", "paid", "overdue", "disputed", "cancelled")
_EDITABLE = ("draft", "pending", "overdue", "disputed")

OBLIGATION_WORKFLOW = Workflow(
    name="obligation",
    description="Royalty / revenue / transaction obligation lifecycle",
    initial_state="pending",
    states=_ANY_STATE,
    transitions=(
        Transition("draft", "pending", action="submit"),
        Transition("pending", "paid", action="mark_paid", posts_entry=True),
        Transition("overdue", "paid", action="mark_paid", posts_entry=True),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("overdue", "cancelled", action="cancel"),
        Transition("disputed", "cancelled", action="cancel"),
        Transition("pending", "disputed", action="dispute"),
        Transition("overdue", "disputed", action="dispute"),
        Transition("disputed", "pending", action="resolve_dispute"),
        Transition("overdue", "overdue", action="calculate_late_fee", guard=NO_LATE_FEE_APPLIED),
        Transition("draft", "draft", action="add_adjustment"),
        Transition("pending", "pending", action="add_adjustment"),
        Transition("overdue", "overdue", action="add_adjustment"),
        Transition("disputed", "disputed", action="add_adjustment"),
        *(Transition(state, state, action="add_line_item") for state in _EDITABLE),
        Transition("paid", "paid", action="refund", guard=PAYMENT_COMPLETED, posts_entry=True),
        *(Transition(state, state, action="add_attachment") for state in _ANY_STATE),
    ),
)

logger.info(
    "obligation_workflow_registered",
    extra={
        "workflow_name": OBLIGATION_WORKFLOW.name,
        "state_count": len(OBLIGATION_WORKFLOW.states),
        "transition_count": len(OBLIGATION_WORKFLOW.transitions),
        "initial_state": OBLIGATION_WORKFLOW.initial_state,
    },
)
