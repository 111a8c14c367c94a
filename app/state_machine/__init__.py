"""
State Machine Module for Order Lifecycle
"""
from app.state_machine.order_transitions import (
    ORDER_TRANSITIONS,
    TERMINAL_STATUSES,
    apply_transition,
    can_transition,
    is_terminal,
)

__all__ = [
    "ORDER_TRANSITIONS",
    "TERMINAL_STATUSES",
    "apply_transition",
    "can_transition",
    "is_terminal",
]
