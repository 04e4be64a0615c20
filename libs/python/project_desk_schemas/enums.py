"""Enum definitions shared across the project lifecycle."""

from __future__ import annotations

from enum import Enum


class ProjectStatus(str, Enum):
    OUTLINE_GENERATED = "OUTLINE_GENERATED"
    RESEARCH_IN_PROGRESS = "RESEARCH_IN_PROGRESS"
    RESEARCH_COMPLETE = "RESEARCH_COMPLETE"
    WRITING_IN_PROGRESS = "WRITING_IN_PROGRESS"
    CHAPTER_WRITING_STARTED = "CHAPTER_WRITING_STARTED"
    CHAPTER_WRITING_COMPLETED = "CHAPTER_WRITING_COMPLETED"
    ABSTRACT_GENERATED = "ABSTRACT_GENERATED"
    PROJECT_COMPLETE = "PROJECT_COMPLETE"


class Milestone(str, Enum):
    OUTLINE_GENERATED = "OUTLINE_GENERATED"
    RESEARCH_IN_PROGRESS = "RESEARCH_IN_PROGRESS"
    RESEARCH_COMPLETE = "RESEARCH_COMPLETE"
    WRITING_IN_PROGRESS = "WRITING_IN_PROGRESS"
    CHAPTER_WRITING_STARTED = "CHAPTER_WRITING_STARTED"
    CHAPTER_WRITING_COMPLETED = "CHAPTER_WRITING_COMPLETED"
    ABSTRACT_GENERATED = "ABSTRACT_GENERATED"
    PROJECT_COMPLETE = "PROJECT_COMPLETE"


class Phase(str, Enum):
    OUTLINE = "OUTLINE"
    RESEARCH = "RESEARCH"
    WRITING = "WRITING"
    ABSTRACT = "ABSTRACT"
    REVIEW = "REVIEW"


class ProjectMode(str, Enum):
    DIY = "DIY"
    CONCIERGE = "CONCIERGE"


class PaymentStatus(str, Enum):
    SUCCESS = "SUCCESS"


class SwitchRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


# Statuses a collaborator may set directly through the status endpoint.
ASSIGNABLE_STATUSES: frozenset[ProjectStatus] = frozenset(
    {
        ProjectStatus.OUTLINE_GENERATED,
        ProjectStatus.RESEARCH_IN_PROGRESS,
        ProjectStatus.RESEARCH_COMPLETE,
        ProjectStatus.WRITING_IN_PROGRESS,
        ProjectStatus.PROJECT_COMPLETE,
    }
)

IN_PROGRESS_STATUSES: frozenset[ProjectStatus] = frozenset(
    {
        ProjectStatus.RESEARCH_IN_PROGRESS,
        ProjectStatus.RESEARCH_COMPLETE,
        ProjectStatus.WRITING_IN_PROGRESS,
    }
)
