"""In-memory :class:`ProjectStore` that mirrors the database constraints."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator, Optional

from project_desk_core.errors import ProjectAlreadyLocked, RequestAlreadyPending
from project_desk_core.store import OwnerRef, ProjectStore, StoreSession
from project_desk_schemas import (
    AnonymousOwner,
    AuthenticatedOwner,
    Payment,
    Project,
    SwitchRequestStatus,
    TopicSwitchRequest,
    utcnow,
)


def _owner_key(owner: OwnerRef) -> tuple[str, str]:
    if isinstance(owner, AuthenticatedOwner):
        return ("user", owner.user_id)
    return ("anonymous", owner.anonymous_id)


class InMemorySession(StoreSession):
    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store

    # Projects

    def get_project(self, project_id: str, *, for_update: bool = False) -> Optional[Project]:
        project = self._store.projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    def list_projects(self, owners: list[OwnerRef]) -> list[Project]:
        keys = {_owner_key(owner) for owner in owners}
        matches = [p for p in self._store.projects.values() if _owner_key(p.owner) in keys]
        matches.sort(key=lambda p: p.updated_at, reverse=True)
        return [p.model_copy(deep=True) for p in matches]

    def find_locked_project(self, owner: OwnerRef) -> Optional[Project]:
        key = _owner_key(owner)
        for project in self._store.projects.values():
            if project.is_locked and _owner_key(project.owner) == key:
                return project.model_copy(deep=True)
        return None

    def insert_project(self, project: Project) -> Project:
        self._check_lock_index(project)
        self._store.projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    def save_project(self, project: Project) -> Project:
        self._check_lock_index(project)
        stored = project.model_copy(deep=True, update={"updated_at": self._store.tick()})
        self._store.projects[project.id] = stored
        return stored.model_copy(deep=True)

    def set_lock(self, project_id: str, locked: bool, locked_at: Optional[datetime]) -> Project:
        current = self._store.projects[project_id]
        return self.save_project(current.model_copy(update={"is_locked": locked, "locked_at": locked_at}))

    def _check_lock_index(self, project: Project) -> None:
        if not project.is_locked:
            return
        key = _owner_key(project.owner)
        for other in self._store.projects.values():
            if other.id != project.id and other.is_locked and _owner_key(other.owner) == key:
                raise ProjectAlreadyLocked(other.id, project_id=project.id)

    # Payments

    def get_payment_by_reference(self, reference: str) -> Optional[Payment]:
        payment = self._store.payments.get(reference)
        return payment.model_copy(deep=True) if payment else None

    def insert_payment(self, payment: Payment) -> Optional[Payment]:
        if payment.reference in self._store.payments:
            return None
        self._store.payments[payment.reference] = payment.model_copy(deep=True)
        return payment.model_copy(deep=True)

    def list_payments(self, user_id: str) -> list[Payment]:
        rows = [p for p in self._store.payments.values() if p.user_id == user_id]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy(deep=True) for p in rows]

    # Users

    def find_user_id_by_email(self, email: str) -> Optional[str]:
        wanted = email.strip().lower()
        for user in self._store.users.values():
            if user["email"] == wanted:
                return user["id"]
        return None

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        user = self._store.users.get(user_id)
        return dict(user) if user else None

    # Topic switch requests

    def insert_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        if request.status is SwitchRequestStatus.PENDING and self.find_pending_switch_request(request.project_id):
            raise RequestAlreadyPending(request.project_id)
        self._store.switch_requests[request.id] = request.model_copy(deep=True)
        return request.model_copy(deep=True)

    def get_switch_request(self, request_id: str, *, for_update: bool = False) -> Optional[TopicSwitchRequest]:
        request = self._store.switch_requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    def find_pending_switch_request(self, project_id: str) -> Optional[TopicSwitchRequest]:
        for request in self._store.switch_requests.values():
            if request.project_id == project_id and request.status is SwitchRequestStatus.PENDING:
                return request.model_copy(deep=True)
        return None

    def save_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        self._store.switch_requests[request.id] = request.model_copy(deep=True)
        return request.model_copy(deep=True)

    def list_switch_requests(self, status: Optional[SwitchRequestStatus] = None) -> list[TopicSwitchRequest]:
        rows = [r for r in self._store.switch_requests.values() if status is None or r.status is status]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in rows]


class InMemoryStore(ProjectStore):
    """Serialises transactions with one lock and rolls back by snapshot."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._last_tick: Optional[datetime] = None
        self.projects: dict[str, Project] = {}
        self.payments: dict[str, Payment] = {}
        self.switch_requests: dict[str, TopicSwitchRequest] = {}
        self.users: dict[str, dict[str, Any]] = {}

    def tick(self) -> datetime:
        now = utcnow()
        if self._last_tick is not None and now <= self._last_tick:
            now = self._last_tick + timedelta(microseconds=1)
        self._last_tick = now
        return now

    def _snapshot(self) -> tuple[Any, ...]:
        return copy.deepcopy((self.projects, self.payments, self.switch_requests, self.users))

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield InMemorySession(self)
            except BaseException:
                self.projects, self.payments, self.switch_requests, self.users = snapshot
                raise

    # Seeding helpers used by tests

    def add_user(self, user_id: str, email: str, name: Optional[str] = None) -> None:
        self.users[user_id] = {"id": user_id, "email": email.strip().lower(), "name": name}

    def add_project(self, project_id: str, owner: OwnerRef, **fields: Any) -> Project:
        project = Project(id=project_id, owner=owner, **fields)
        self.projects[project_id] = project
        return project.model_copy(deep=True)


def user_owner(user_id: str) -> AuthenticatedOwner:
    return AuthenticatedOwner(user_id=user_id)


def anonymous_owner(anonymous_id: str) -> AnonymousOwner:
    return AnonymousOwner(anonymous_id=anonymous_id)
