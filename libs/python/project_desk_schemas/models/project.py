"""Project entity, ownership and progress models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..enums import Milestone, Phase, ProjectMode, ProjectStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthenticatedOwner(BaseModel):
    """Project bound to a registered user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    user_id: str = Field(..., min_length=1)


class AnonymousOwner(BaseModel):
    """Project created from a pre-auth session and not yet claimed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["anonymous"] = "anonymous"
    anonymous_id: str = Field(..., min_length=1)


Owner = Annotated[Union[AuthenticatedOwner, AnonymousOwner], Field(discriminator="kind")]


def owner_from_ids(user_id: Optional[str], anonymous_id: Optional[str]) -> AuthenticatedOwner | AnonymousOwner:
    """Build the owner from the two persisted columns, preferring the user."""

    if user_id:
        return AuthenticatedOwner(user_id=str(user_id))
    if anonymous_id:
        return AnonymousOwner(anonymous_id=str(anonymous_id))
    raise ValueError("Project owner requires a user id or an anonymous id")


class ProgressDetails(BaseModel):
    """Optional detail block attached to a milestone event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chapter_id: Optional[str] = None
    chapter_title: Optional[str] = None
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    ai_model: Optional[str] = None
    tokens_used: Optional[float] = None
    time_spent: Optional[float] = Field(None, description="Milliseconds spent on the step")
    notes: Optional[str] = None


class MilestoneEntry(BaseModel):
    """One append-only entry of the project history."""

    milestone: Milestone
    phase: Phase
    timestamp: datetime
    details: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None


class Project(BaseModel):
    """Unit of work for one customer deliverable."""

    id: str
    owner: Owner
    topic: str = ""
    twist: str = ""
    abstract: str = ""
    status: ProjectStatus = ProjectStatus.OUTLINE_GENERATED
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    is_unlocked: bool = False
    mode: Optional[ProjectMode] = None
    progress_percentage: int = Field(default=0, ge=0, le=100)
    content_progress: dict[str, Any] = Field(default_factory=dict)
    document_progress: dict[str, Any] = Field(default_factory=dict)
    ai_generation_status: dict[str, Any] = Field(default_factory=dict)
    time_tracking: dict[str, Any] = Field(default_factory=dict)
    milestones: list[dict[str, Any]] = Field(default_factory=list)
    estimated_completion: Optional[datetime] = None
    actual_completion: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def user_id(self) -> Optional[str]:
        return self.owner.user_id if isinstance(self.owner, AuthenticatedOwner) else None

    @property
    def anonymous_id(self) -> Optional[str]:
        return self.owner.anonymous_id if isinstance(self.owner, AnonymousOwner) else None


class ProgressSnapshot(BaseModel):
    """Full progress view returned by ``GET /projects/{id}/progress``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    progress_percentage: int
    content_progress: dict[str, Any]
    document_progress: dict[str, Any]
    ai_generation_status: dict[str, Any]
    time_tracking: dict[str, Any]
    milestones: list[dict[str, Any]]
    estimated_completion: Optional[datetime] = None
    actual_completion: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProgressSnapshot":
        return cls(
            id=project.id,
            progress_percentage=project.progress_percentage,
            content_progress=project.content_progress,
            document_progress=project.document_progress,
            ai_generation_status=project.ai_generation_status,
            time_tracking=project.time_tracking,
            milestones=project.milestones,
            estimated_completion=project.estimated_completion,
            actual_completion=project.actual_completion,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProjectAnalytics(BaseModel):
    """Aggregate counters over an owner's projects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_projects: int = Field(ge=0)
    completed_projects: int = Field(ge=0)
    in_progress_projects: int = Field(ge=0)
    paid_projects: int = Field(ge=0)
    completion_rate: float = Field(ge=0, le=100)
    avg_project_duration: int = Field(ge=0, description="Average age in whole days")

    @field_validator("completion_rate")
    @classmethod
    def round_rate(cls, value: float) -> float:
        return round(value, 2)
