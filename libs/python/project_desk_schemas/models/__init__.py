"""Pydantic models shared by the API and the lifecycle core."""

from .billing import (
    MINOR_UNITS_PER_MAJOR,
    Payment,
    PaymentCustomer,
    PaymentEvent,
    PaymentEventMetadata,
    to_major_unit,
    to_minor_unit,
)
from .project import (
    AnonymousOwner,
    AuthenticatedOwner,
    MilestoneEntry,
    Owner,
    ProgressDetails,
    ProgressSnapshot,
    Project,
    ProjectAnalytics,
    owner_from_ids,
    utcnow,
)
from .switch import TopicSwitchRequest

__all__ = [
    "MINOR_UNITS_PER_MAJOR",
    "AnonymousOwner",
    "AuthenticatedOwner",
    "MilestoneEntry",
    "Owner",
    "Payment",
    "PaymentCustomer",
    "PaymentEvent",
    "PaymentEventMetadata",
    "ProgressDetails",
    "ProgressSnapshot",
    "Project",
    "ProjectAnalytics",
    "TopicSwitchRequest",
    "owner_from_ids",
    "to_major_unit",
    "to_minor_unit",
    "utcnow",
]
