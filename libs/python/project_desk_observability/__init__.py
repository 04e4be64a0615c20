"""Shared observability helpers used across Project Desk services."""

from .logging import current_log_context, log_context, setup_logging
from .metrics import (
    observe_lock_transition,
    observe_milestone,
    observe_payment_event,
    observe_receipt,
    observe_switch_request,
    setup_fastapi_metrics,
)

__all__ = [
    "current_log_context",
    "log_context",
    "observe_lock_transition",
    "observe_milestone",
    "observe_payment_event",
    "observe_receipt",
    "observe_switch_request",
    "setup_fastapi_metrics",
    "setup_logging",
]
