"""Topic switch request model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..enums import SwitchRequestStatus
from .project import utcnow


class TopicSwitchRequest(BaseModel):
    """Customer request to reopen a locked project under a new topic."""

    id: str
    project_id: str
    user_id: str
    reason: str = Field(..., min_length=1, max_length=200)
    explanation: Optional[str] = Field(None, max_length=4000)
    proof_url: Optional[str] = Field(None, max_length=1000)
    fee: Optional[Decimal] = Field(None, ge=0)
    status: SwitchRequestStatus = SwitchRequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status is not SwitchRequestStatus.PENDING
