"""Prediction lifecycle state machine."""

from predbites.lifecycle.state_machine import (
    TRANSITIONS,
    LifecycleManager,
    accepts_stakes,
    assert_transition,
    can_transition,
    effective_status,
    now_ms,
    remaining,
)

__all__ = [
    "TRANSITIONS",
    "LifecycleManager",
    "accepts_stakes",
    "assert_transition",
    "can_transition",
    "effective_status",
    "now_ms",
    "remaining",
]
