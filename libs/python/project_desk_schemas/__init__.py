"""Shared schemas for the Project Desk stack."""

from .enums import (
    ASSIGNABLE_STATUSES,
    IN_PROGRESS_STATUSES,
    Milestone,
    PaymentStatus,
    Phase,
    ProjectMode,
    ProjectStatus,
    SwitchRequestStatus,
)
from .models import (
    AnonymousOwner,
    AuthenticatedOwner,
    MilestoneEntry,
    Owner,
    Payment,
    PaymentEvent,
    ProgressDetails,
    ProgressSnapshot,
    Project,
    ProjectAnalytics,
    TopicSwitchRequest,
    owner_from_ids,
    to_major_unit,
    to_minor_unit,
    utcnow,
)
from .pricing import ADD_ONS, PLAN_TIERS, AddOn, PricingTier, get_tier, get_tier_by_price, infer_mode

__all__ = [
    "ADD_ONS",
    "ASSIGNABLE_STATUSES",
    "AddOn",
    "AnonymousOwner",
    "AuthenticatedOwner",
    "IN_PROGRESS_STATUSES",
    "Milestone",
    "MilestoneEntry",
    "Owner",
    "PLAN_TIERS",
    "Payment",
    "PaymentEvent",
    "PaymentStatus",
    "Phase",
    "PricingTier",
    "ProgressDetails",
    "ProgressSnapshot",
    "Project",
    "ProjectAnalytics",
    "ProjectMode",
    "ProjectStatus",
    "SwitchRequestStatus",
    "TopicSwitchRequest",
    "get_tier",
    "get_tier_by_price",
    "infer_mode",
    "owner_from_ids",
    "to_major_unit",
    "to_minor_unit",
    "utcnow",
]
