"""Project creation, claiming and collaborator-driven transitions."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from project_desk_observability import log_context
from project_desk_schemas import (
    ASSIGNABLE_STATUSES,
    AnonymousOwner,
    AuthenticatedOwner,
    Project,
    ProjectMode,
    ProjectStatus,
)

from .access import CallerIdentity, ensure_access
from .errors import Forbidden, ProjectAlreadyLocked, ProjectNotFound, Unauthorized, ValidationFailure
from .locking import LockManager
from .store import ProjectStore, StoreSession

logger = logging.getLogger(__name__)

MODE_ENTRY_STATUS: dict[ProjectMode, ProjectStatus] = {
    ProjectMode.CONCIERGE: ProjectStatus.RESEARCH_IN_PROGRESS,
    ProjectMode.DIY: ProjectStatus.OUTLINE_GENERATED,
}


class ProjectService:
    def __init__(self, store: ProjectStore, lock_manager: Optional[LockManager] = None) -> None:
        self._store = store
        self._locks = lock_manager or LockManager()

    def create_project(self, caller: CallerIdentity, topic: str, twist: str = "", abstract: str = "") -> Project:
        owner = caller.primary_owner()
        with self._store.transaction() as session:
            self._locks.ensure_can_create(session, owner)
            project = session.insert_project(
                Project(id=str(uuid4()), owner=owner, topic=topic, twist=twist or "", abstract=abstract)
            )
        logger.info(
            "Project created",
            extra={"project_id": project.id, "user_id": project.user_id, "anonymous": project.user_id is None},
        )
        return project

    def list_projects(self, caller: CallerIdentity) -> list[Project]:
        owners = caller.owners()
        with self._store.transaction() as session:
            return session.list_projects(owners)

    def get_project(self, project_id: str, caller: Optional[CallerIdentity] = None) -> Project:
        with self._store.transaction() as session:
            project = session.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        ensure_access(project, caller)
        return project

    def claim_project(self, project_id: str, user_id: str, anonymous_id: Optional[str]) -> tuple[Project, bool]:
        """Move an anonymous project to ``user_id``.

        Returns the project and whether ownership changed. An empty project
        is filled from the caller's most recent anonymous draft with content.
        """

        if not user_id:
            raise Unauthorized("Unauthorized")

        with log_context(project_id=project_id, user_id=user_id):
            with self._store.transaction() as session:
                project = session.get_project(project_id, for_update=True)
                if project is None:
                    raise ProjectNotFound(project_id)
                if project.user_id == user_id:
                    return project, False
                if project.user_id:
                    raise Forbidden("Forbidden", project_id=project_id)
                if not anonymous_id or project.anonymous_id != anonymous_id:
                    logger.warning("Claim rejected: anonymous id mismatch")
                    raise Forbidden("Forbidden: Ownership mismatch", project_id=project_id)

                new_owner = AuthenticatedOwner(user_id=user_id)
                if project.is_locked:
                    held = session.find_locked_project(new_owner)
                    if held is not None:
                        raise ProjectAlreadyLocked(held.id, project_id=project_id)

                update: dict[str, object] = {"owner": new_owner}
                if not project.topic.strip():
                    update.update(self._merge_source(session, project, anonymous_id))
                claimed = session.save_project(project.model_copy(update=update))

            logger.info("Project claimed", extra={"merged": "topic" in update})
            return claimed, True

    @staticmethod
    def _merge_source(session: StoreSession, project: Project, anonymous_id: str) -> dict[str, object]:
        drafts = session.list_projects([AnonymousOwner(anonymous_id=anonymous_id)])
        for draft in drafts:
            if draft.id != project.id and draft.topic.strip():
                return {"topic": draft.topic, "twist": draft.twist, "abstract": draft.abstract}
        return {}

    def update_status(self, project_id: str, status: ProjectStatus, caller: Optional[CallerIdentity] = None) -> Project:
        if status not in ASSIGNABLE_STATUSES:
            raise ValidationFailure("Invalid status", project_id=project_id, status=status.value)
        with self._store.transaction() as session:
            project = session.get_project(project_id, for_update=True)
            if project is None:
                raise ProjectNotFound(project_id)
            ensure_access(project, caller)
            updated = session.save_project(project.model_copy(update={"status": status}))
        logger.info("Project status updated", extra={"project_id": project_id, "status": status.value})
        return updated

    def update_mode(self, project_id: str, mode: ProjectMode, caller: Optional[CallerIdentity] = None) -> Project:
        with self._store.transaction() as session:
            project = session.get_project(project_id, for_update=True)
            if project is None:
                raise ProjectNotFound(project_id)
            ensure_access(project, caller)
            updated = session.save_project(
                project.model_copy(update={"mode": mode, "status": MODE_ENTRY_STATUS[mode]})
            )
        logger.info("Project mode updated", extra={"project_id": project_id, "mode": mode.value})
        return updated
