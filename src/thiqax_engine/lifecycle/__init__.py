"""Application status state machine."""

from .state_machine import (
    ApplicationStateMachine,
    TERMINAL_STATUSES,
    TRANSITIONS,
    allowed_transitions,
    apply_transition,
    can_transition,
)

__all__ = [
    "ApplicationStateMachine",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "allowed_transitions",
    "apply_transition",
    "can_transition",
]
