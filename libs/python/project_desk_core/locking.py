"""Single-locked-project rule for project owners."""

from __future__ import annotations

import logging
from typing import Optional

from project_desk_observability import observe_lock_transition
from project_desk_schemas import Project, utcnow

from .errors import ProjectAlreadyLocked, ProjectNotFound
from .store import OwnerRef, StoreSession

logger = logging.getLogger(__name__)


class LockManager:
    """Locks and unlocks projects inside a caller-provided session.

    The manager never opens its own transaction so the lock change commits or
    rolls back together with the payment or review that triggered it.
    """

    def lock(self, session: StoreSession, project_id: str) -> Project:
        project = session.get_project(project_id, for_update=True)
        if project is None:
            raise ProjectNotFound(project_id)
        if project.is_locked:
            return project

        existing = session.find_locked_project(project.owner)
        if existing is not None and existing.id != project_id:
            observe_lock_transition("lock", "conflict")
            raise ProjectAlreadyLocked(existing.id, project_id=project_id)

        try:
            locked = session.set_lock(project_id, True, utcnow())
        except ProjectAlreadyLocked:
            observe_lock_transition("lock", "conflict")
            raise
        observe_lock_transition("lock")
        logger.info("Project locked", extra={"project_id": project_id, "user_id": project.user_id})
        return locked

    def unlock(self, session: StoreSession, project_id: str) -> Project:
        project = session.get_project(project_id, for_update=True)
        if project is None:
            raise ProjectNotFound(project_id)
        if not project.is_locked:
            return project
        unlocked = session.set_lock(project_id, False, None)
        observe_lock_transition("unlock")
        logger.info("Project unlocked", extra={"project_id": project_id, "user_id": project.user_id})
        return unlocked

    def get_locked_project(self, session: StoreSession, owner: OwnerRef) -> Optional[Project]:
        return session.find_locked_project(owner)

    def ensure_can_create(self, session: StoreSession, owner: OwnerRef) -> None:
        """Refuse new work while the owner is committed to a locked project."""

        existing = session.find_locked_project(owner)
        if existing is not None:
            raise ProjectAlreadyLocked(existing.id)
