"""
Lease Workflows.

State machines for occupancy and invoice lifecycles.  Services consult
these tables before every status change; a missing transition raises
InvalidTransitionError.
"""

from dataclasses import dataclass

from lease_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    terminal_states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def target(self, from_state: str, action: str) -> str | None:
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t.to_state
        return None

    def require(self, entity_id, from_state: str, action: str) -> str:
        """Return the target state or raise InvalidTransitionError."""
        to_state = self.target(from_state, action)
        if to_state is None:
            raise InvalidTransitionError(self.name, str(entity_id), from_state, action)
        return to_state

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


# -----------------------------------------------------------------------------
# Occupancy Workflow
# -----------------------------------------------------------------------------

OCCUPANCY_WORKFLOW = Workflow(
    name="Occupancy",
    description="Lease lifecycle",
    initial_state="pending",
    states=("pending", "active", "ended", "cancelled"),
    terminal_states=("ended", "cancelled"),
    transitions=(
        Transition("pending", "active", action="activate"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("active", "ended", action="end"),
    ),
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="Invoice",
    description="Rent and charge invoice lifecycle",
    initial_state="draft",
    states=("draft", "sent", "paid", "overdue", "cancelled"),
    terminal_states=("paid", "cancelled"),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("draft", "sent", action="apply_payment"),
        Transition("draft", "overdue", action="apply_payment"),
        Transition("draft", "paid", action="apply_payment"),
        Transition("sent", "paid", action="apply_payment"),
        Transition("sent", "overdue", action="apply_payment"),
        Transition("sent", "sent", action="apply_payment"),
        Transition("sent", "overdue", action="mark_overdue"),
        Transition("sent", "cancelled", action="cancel"),
        Transition("overdue", "paid", action="apply_payment"),
        Transition("overdue", "overdue", action="apply_payment"),
        Transition("overdue", "cancelled", action="cancel"),
    ),
)


def invoice_transition_allowed(from_state: str, to_state: str, action: str) -> bool:
    return any(
        t.from_state == from_state and t.to_state == to_state and t.action == action
        for t in INVOICE_WORKFLOW.transitions
    )
