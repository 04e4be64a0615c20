"""Request and review workflow for reopening a locked project."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from project_desk_observability import log_context, observe_switch_request
from project_desk_schemas import SwitchRequestStatus, TopicSwitchRequest, utcnow

from .errors import (
    NotOwner,
    ProjectNotFound,
    ProjectNotLocked,
    RequestAlreadyPending,
    RequestAlreadyResolved,
    RequestNotFound,
    ValidationFailure,
)
from .locking import LockManager
from .store import ProjectStore

logger = logging.getLogger(__name__)

SYSTEM_REVIEWER = "system"
REVIEW_DECISIONS = frozenset({SwitchRequestStatus.APPROVED, SwitchRequestStatus.DENIED})


class TopicSwitchWorkflow:
    def __init__(self, store: ProjectStore, lock_manager: Optional[LockManager] = None) -> None:
        self._store = store
        self._locks = lock_manager or LockManager()

    def create_request(
        self,
        user_id: str,
        project_id: str,
        reason: str,
        explanation: Optional[str] = None,
        proof_url: Optional[str] = None,
        fee: Optional[Decimal] = None,
    ) -> TopicSwitchRequest:
        with log_context(project_id=project_id, user_id=user_id):
            with self._store.transaction() as session:
                project = session.get_project(project_id, for_update=True)
                if project is None:
                    raise ProjectNotFound(project_id)
                if project.user_id != user_id:
                    raise NotOwner(project_id, user_id)
                if not project.is_locked:
                    raise ProjectNotLocked(project_id)
                if session.find_pending_switch_request(project_id) is not None:
                    raise RequestAlreadyPending(project_id)

                request = session.insert_switch_request(
                    TopicSwitchRequest(
                        id=str(uuid4()),
                        project_id=project_id,
                        user_id=user_id,
                        reason=reason,
                        explanation=explanation,
                        proof_url=proof_url,
                        fee=fee or None,
                    )
                )
            observe_switch_request("created")
            logger.info("Topic switch requested", extra={"request_id": request.id})
            return request

    def review_request(
        self,
        request_id: str,
        decision: SwitchRequestStatus,
        reviewer_id: Optional[str] = None,
    ) -> TopicSwitchRequest:
        if decision not in REVIEW_DECISIONS:
            raise ValidationFailure("Invalid status", request_id=request_id, status=decision.value)

        with log_context(request_id=request_id):
            with self._store.transaction() as session:
                request = session.get_switch_request(request_id, for_update=True)
                if request is None:
                    raise RequestNotFound(request_id)
                if request.is_resolved:
                    raise RequestAlreadyResolved(request_id, request.status.value)

                resolved = session.save_switch_request(
                    request.model_copy(
                        update={
                            "status": decision,
                            "resolved_at": utcnow(),
                            "resolved_by": reviewer_id or SYSTEM_REVIEWER,
                        }
                    )
                )
                if decision is SwitchRequestStatus.APPROVED:
                    self._locks.unlock(session, request.project_id)

            observe_switch_request(decision.value)
            logger.info(
                "Topic switch reviewed",
                extra={"project_id": resolved.project_id, "decision": decision.value, "resolved_by": resolved.resolved_by},
            )
            return resolved

    def process_paid_switch(self, request_id: str) -> TopicSwitchRequest:
        """Approve a request whose switch fee has been paid."""

        return self.review_request(request_id, SwitchRequestStatus.APPROVED)

    def list_requests(self, status: Optional[SwitchRequestStatus] = None) -> list[TopicSwitchRequest]:
        with self._store.transaction() as session:
            return session.list_switch_requests(status)
