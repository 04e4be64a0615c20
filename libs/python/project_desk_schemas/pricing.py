"""Pricing tiers and the helpers that map a paid amount back to a tier."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProjectMode

CONCIERGE_TIER_PREFIX = "AGENCY"


class PricingTier(BaseModel):
    """Single purchasable plan. Prices are in the major currency unit."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    label: str
    price: Decimal = Field(..., gt=0)
    track: str = Field(..., description="PAPER or SOFTWARE")
    popular: bool = False

    @property
    def mode(self) -> ProjectMode:
        return infer_mode(self.id)


class AddOn(BaseModel):
    """A la carte service purchasable on top of any plan."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    price: Decimal = Field(..., gt=0)
    description: str = ""


PLAN_TIERS: tuple[PricingTier, ...] = (
    PricingTier(id="DIY_PAPER", label="Paper Only (DIY)", price=Decimal("15000"), track="PAPER"),
    PricingTier(id="DIY_SOFTWARE", label="Software + Paper (DIY)", price=Decimal("20000"), track="SOFTWARE"),
    PricingTier(id="AGENCY_PAPER_EXPRESS", label="Paper Express", price=Decimal("60000"), track="PAPER"),
    PricingTier(
        id="AGENCY_PAPER_DEFENSE", label="Paper + Defense", price=Decimal("80000"), track="PAPER", popular=True
    ),
    PricingTier(id="AGENCY_PAPER_PREMIUM", label="Paper Premium", price=Decimal("100000"), track="PAPER"),
    PricingTier(id="AGENCY_CODE_GO", label="Code & Go", price=Decimal("120000"), track="SOFTWARE"),
    PricingTier(
        id="AGENCY_DEFENSE_READY", label="Defense Ready", price=Decimal("200000"), track="SOFTWARE", popular=True
    ),
    PricingTier(id="AGENCY_SOFT_LIFE", label="The Soft Life", price=Decimal("320000"), track="SOFTWARE"),
)

ADD_ONS: tuple[AddOn, ...] = (
    AddOn(
        id="ADDON_DEFENSE_SPEECH",
        label="Defense Speech Writing",
        price=Decimal("25000"),
        description="Professional speech for your project defense",
    ),
    AddOn(
        id="ADDON_CODE_REVIEW",
        label="Code Review & Debug",
        price=Decimal("20000"),
        description="Expert review of your software code",
    ),
    AddOn(
        id="ADDON_CHAPTER_EDIT",
        label="Chapter Editing",
        price=Decimal("10000"),
        description="Polish and refine a single chapter",
    ),
    AddOn(
        id="ADDON_RUSH_DELIVERY",
        label="Rush Delivery",
        price=Decimal("15000"),
        description="48-hour priority processing",
    ),
    AddOn(
        id="ADDON_DEEP_RESEARCH",
        label="AI Deep Research",
        price=Decimal("5000"),
        description="Automated research synthesis",
    ),
)


def infer_mode(tier_id: str) -> ProjectMode:
    """Concierge tiers share the agency prefix; everything else is self-serve."""

    return ProjectMode.CONCIERGE if tier_id.startswith(CONCIERGE_TIER_PREFIX) else ProjectMode.DIY


def get_tier_by_price(price: Decimal | int | float) -> Optional[PricingTier]:
    """Return the plan tier whose price equals ``price`` exactly, if any.

    Add-ons are never returned; an add-on purchase does not pick a plan.
    """

    amount = Decimal(str(price))
    for tier in PLAN_TIERS:
        if tier.price == amount:
            return tier
    return None


def get_tier(tier_id: str) -> Optional[PricingTier]:
    for tier in PLAN_TIERS:
        if tier.id == tier_id:
            return tier
    return None


__all__ = [
    "ADD_ONS",
    "AddOn",
    "PLAN_TIERS",
    "PricingTier",
    "get_tier",
    "get_tier_by_price",
    "infer_mode",
]
