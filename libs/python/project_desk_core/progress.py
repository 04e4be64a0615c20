"""Milestone history and the progress percentage derived from it.

Each milestone appends one entry to the project's history and then applies
its handler to the JSON progress maps. The percentage is recomputed from
``content_progress`` alone, so replaying the same maps always yields the same
number:

* with at least one chapter: ``completed_phases / 4 * 60 + done / total * 40``
* otherwise: ``completed_phases / 4 * 100``

rounded half up.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from fractions import Fraction
from typing import Any, Callable, Mapping, Optional

from project_desk_observability import log_context, observe_milestone
from project_desk_schemas import (
    IN_PROGRESS_STATUSES,
    Milestone,
    MilestoneEntry,
    Phase,
    ProgressDetails,
    ProgressSnapshot,
    Project,
    ProjectAnalytics,
    ProjectStatus,
    utcnow,
)

from .access import CallerIdentity, ensure_access
from .errors import ProjectNotFound
from .store import ProjectStore

logger = logging.getLogger(__name__)

TRACKED_PHASES: tuple[str, ...] = ("outline", "research", "writing", "abstract")
PHASE_WEIGHT = Fraction(60)
CHAPTER_WEIGHT = Fraction(40)
SECONDS_PER_DAY = 60 * 60 * 24


def _round_half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


def calculate_progress_percentage(content_progress: Mapping[str, Any]) -> int:
    completed_phases = sum(
        1
        for phase in TRACKED_PHASES
        if isinstance(content_progress.get(phase), Mapping) and content_progress[phase].get("completed")
    )
    phase_share = Fraction(completed_phases, len(TRACKED_PHASES))

    chapters = content_progress.get("chapters")
    if isinstance(chapters, Mapping) and chapters:
        done = sum(1 for chapter in chapters.values() if isinstance(chapter, Mapping) and chapter.get("completed"))
        value = phase_share * PHASE_WEIGHT + Fraction(done, len(chapters)) * CHAPTER_WEIGHT
    else:
        value = phase_share * 100
    return max(0, min(100, _round_half_up(value)))


class _MilestoneUpdate:
    """Mutable working copy of the progress maps for one milestone."""

    def __init__(self, project: Project, details: dict[str, Any], now: datetime) -> None:
        self.content = dict(project.content_progress)
        self.documents = dict(project.document_progress)
        self.ai_status = dict(project.ai_generation_status)
        self.details = details
        self.now = now
        self.stamp = now.isoformat()
        self.actual_completion = project.actual_completion

    def chapters(self) -> dict[str, Any]:
        chapters = dict(self.content.get("chapters") or {})
        self.content["chapters"] = chapters
        return chapters


MilestoneHandler = Callable[[_MilestoneUpdate], None]


def _outline_generated(update: _MilestoneUpdate) -> None:
    update.content["outline"] = {"completed": True, "timestamp": update.stamp}
    update.ai_status["outline"] = {"status": "completed", "timestamp": update.stamp}


def _research_in_progress(update: _MilestoneUpdate) -> None:
    update.content["research"] = {"status": "in_progress", "timestamp": update.stamp}


def _research_complete(update: _MilestoneUpdate) -> None:
    update.content["research"] = {"completed": True, "timestamp": update.stamp}
    update.documents["status"] = "completed"


def _writing_in_progress(update: _MilestoneUpdate) -> None:
    update.content["writing"] = {"status": "in_progress", "timestamp": update.stamp}


def _chapter_started(update: _MilestoneUpdate) -> None:
    chapter_id = update.details.get("chapterId")
    if not chapter_id:
        return
    chapter = {"status": "in_progress", "startedAt": update.stamp}
    title = update.details.get("chapterTitle")
    if title is not None:
        chapter["title"] = title
    update.chapters()[chapter_id] = chapter


def _chapter_completed(update: _MilestoneUpdate) -> None:
    chapter_id = update.details.get("chapterId")
    if not chapter_id:
        return
    chapters = update.chapters()
    chapters[chapter_id] = {
        **(chapters.get(chapter_id) or {}),
        "completed": True,
        "completedAt": update.stamp,
        "timeSpent": update.details.get("timeSpent"),
    }


def _abstract_generated(update: _MilestoneUpdate) -> None:
    update.content["abstract"] = {"completed": True, "timestamp": update.stamp}
    update.ai_status["abstract"] = {"status": "completed", "timestamp": update.stamp}


def _project_complete(update: _MilestoneUpdate) -> None:
    update.content["overall"] = {"completed": True, "timestamp": update.stamp}
    update.actual_completion = update.now


MILESTONE_HANDLERS: dict[Milestone, MilestoneHandler] = {
    Milestone.OUTLINE_GENERATED: _outline_generated,
    Milestone.RESEARCH_IN_PROGRESS: _research_in_progress,
    Milestone.RESEARCH_COMPLETE: _research_complete,
    Milestone.WRITING_IN_PROGRESS: _writing_in_progress,
    Milestone.CHAPTER_WRITING_STARTED: _chapter_started,
    Milestone.CHAPTER_WRITING_COMPLETED: _chapter_completed,
    Milestone.ABSTRACT_GENERATED: _abstract_generated,
    Milestone.PROJECT_COMPLETE: _project_complete,
}

_missing = set(Milestone) - set(MILESTONE_HANDLERS)
if _missing:  # pragma: no cover - guards enum additions
    raise RuntimeError(f"Milestones without a progress handler: {sorted(m.value for m in _missing)}")


def _accumulate_time(time_tracking: dict[str, Any], phase: Phase, time_spent: Optional[float], stamp: str) -> dict[str, Any]:
    if not time_spent:
        return time_tracking
    updated = dict(time_tracking)
    current = dict(updated.get(phase.value) or {})
    current["totalTime"] = (current.get("totalTime") or 0) + time_spent
    current["lastUpdated"] = stamp
    updated[phase.value] = current
    return updated


def apply_milestone(
    project: Project,
    milestone: Milestone,
    phase: Phase,
    details: Optional[ProgressDetails] = None,
    metadata: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Project:
    """Return a copy of ``project`` with the milestone appended and applied."""

    now = now or utcnow()
    detail_map = details.model_dump(by_alias=True, exclude_none=True) if details else {}
    entry = MilestoneEntry(
        milestone=milestone,
        phase=phase,
        timestamp=now,
        details=detail_map or None,
        metadata=metadata,
    )

    update = _MilestoneUpdate(project, detail_map, now)
    MILESTONE_HANDLERS[milestone](update)

    return project.model_copy(
        update={
            "milestones": [*project.milestones, entry.model_dump(mode="json")],
            "content_progress": update.content,
            "document_progress": update.documents,
            "ai_generation_status": update.ai_status,
            "time_tracking": _accumulate_time(
                project.time_tracking, phase, detail_map.get("timeSpent"), update.stamp
            ),
            "progress_percentage": calculate_progress_percentage(update.content),
            "actual_completion": update.actual_completion,
        }
    )


def summarise_projects(projects: list[Project]) -> ProjectAnalytics:
    total = len(projects)
    completed = sum(1 for project in projects if project.status is ProjectStatus.PROJECT_COMPLETE)
    in_progress = sum(1 for project in projects if project.status in IN_PROGRESS_STATUSES)
    paid = sum(1 for project in projects if project.is_unlocked)
    if total:
        average_seconds = sum((project.updated_at - project.created_at).total_seconds() for project in projects) / total
    else:
        average_seconds = 0.0
    return ProjectAnalytics(
        total_projects=total,
        completed_projects=completed,
        in_progress_projects=in_progress,
        paid_projects=paid,
        completion_rate=(completed / total * 100) if total else 0.0,
        avg_project_duration=max(0, _round_half_up(Fraction(average_seconds) / SECONDS_PER_DAY)),
    )


class ProgressTracker:
    def __init__(self, store: ProjectStore) -> None:
        self._store = store

    def update_progress(
        self,
        project_id: str,
        milestone: Milestone,
        phase: Phase,
        details: Optional[ProgressDetails] = None,
        metadata: Optional[dict[str, Any]] = None,
        caller: Optional[CallerIdentity] = None,
    ) -> Project:
        with log_context(project_id=project_id, milestone=milestone.value, phase=phase.value):
            with self._store.transaction() as session:
                project = session.get_project(project_id, for_update=True)
                if project is None:
                    raise ProjectNotFound(project_id)
                ensure_access(project, caller)
                saved = session.save_project(apply_milestone(project, milestone, phase, details, metadata))
            observe_milestone(milestone.value)
            logger.info(
                "Milestone recorded",
                extra={"progress_percentage": saved.progress_percentage},
            )
            return saved

    def get_progress(self, project_id: str, caller: Optional[CallerIdentity] = None) -> ProgressSnapshot:
        with self._store.transaction() as session:
            project = session.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        ensure_access(project, caller)
        return ProgressSnapshot.from_project(project)

    def analytics(self, caller: CallerIdentity) -> ProjectAnalytics:
        owners = caller.owners()
        with self._store.transaction() as session:
            projects = session.list_projects(owners)
        return summarise_projects(projects)
