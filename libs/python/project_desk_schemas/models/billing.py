"""Payment records and inbound gateway events."""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..enums import PaymentStatus
from .project import utcnow

MINOR_UNITS_PER_MAJOR = 100


def to_major_unit(amount_minor: int | Decimal) -> Decimal:
    """Convert a gateway amount (kobo, cents) into the major currency unit."""

    return Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR


def to_minor_unit(amount_major: int | Decimal) -> int:
    return int(Decimal(amount_major) * MINOR_UNITS_PER_MAJOR)


class PaymentEventMetadata(BaseModel):
    """Metadata echoed back by the gateway; only ``projectId`` is load-bearing."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    project_id: Optional[str] = Field(None, alias="projectId")


class PaymentCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None


class PaymentEvent(BaseModel):
    """Transaction payload as delivered by the payment gateway."""

    model_config = ConfigDict(extra="allow")

    reference: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0, description="Amount in the minor currency unit")
    currency: str = "NGN"
    channel: Optional[str] = None
    status: Optional[str] = None
    paid_at: Optional[str] = None
    metadata: PaymentEventMetadata = Field(default_factory=PaymentEventMetadata)
    customer: PaymentCustomer = Field(default_factory=PaymentCustomer)

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, value: Any) -> Any:
        # The gateway echoes metadata as an empty string or as serialized JSON.
        if value in (None, ""):
            return {}
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return {}
            return decoded if isinstance(decoded, dict) else {}
        return value

    @property
    def project_id(self) -> Optional[str]:
        return self.metadata.project_id

    @property
    def amount_major(self) -> Decimal:
        return to_major_unit(self.amount)


class Payment(BaseModel):
    """Immutable record of a successful payment, one per gateway reference."""

    id: str
    reference: str
    amount: Decimal = Field(..., ge=0)
    currency: str
    status: PaymentStatus = PaymentStatus.SUCCESS
    gateway_response: dict[str, Any] = Field(default_factory=dict)
    user_id: str
    project_id: str
    created_at: datetime = Field(default_factory=utcnow)
