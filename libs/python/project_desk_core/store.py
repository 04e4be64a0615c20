"""Storage contract for projects, payments and topic switch requests.

A :class:`ProjectStore` hands out :class:`StoreSession` objects, one per
transaction. Every lifecycle operation runs inside a single session so the
read-modify-write on a project document is serialized by the row lock taken
with ``for_update=True`` and committed or rolled back as a whole.

Uniqueness is owned by the storage layer:

* ``insert_payment`` returns ``None`` when the gateway reference already exists;
* ``insert_switch_request`` raises :class:`RequestAlreadyPending` when the
  project already has a pending request;
* ``set_lock`` and ``save_project`` raise :class:`ProjectAlreadyLocked` when
  the owner would end up with two locked projects.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Optional

from project_desk_schemas import (
    AnonymousOwner,
    AuthenticatedOwner,
    Payment,
    Project,
    SwitchRequestStatus,
    TopicSwitchRequest,
)

OwnerRef = AuthenticatedOwner | AnonymousOwner


class StoreSession(ABC):
    """Unit of work bound to one storage transaction."""

    # Projects

    @abstractmethod
    def get_project(self, project_id: str, *, for_update: bool = False) -> Optional[Project]:
        """Load a project; ``for_update`` holds its row lock until the session ends."""

    @abstractmethod
    def list_projects(self, owners: list[OwnerRef]) -> list[Project]:
        """Projects owned by any of ``owners``, most recently updated first."""

    @abstractmethod
    def find_locked_project(self, owner: OwnerRef) -> Optional[Project]:
        """The owner's locked project, if any."""

    @abstractmethod
    def insert_project(self, project: Project) -> Project:
        ...

    @abstractmethod
    def save_project(self, project: Project) -> Project:
        """Persist every mutable column of ``project`` and bump ``updated_at``."""

    @abstractmethod
    def set_lock(self, project_id: str, locked: bool, locked_at: Optional[datetime]) -> Project:
        ...

    # Payments

    @abstractmethod
    def get_payment_by_reference(self, reference: str) -> Optional[Payment]:
        ...

    @abstractmethod
    def insert_payment(self, payment: Payment) -> Optional[Payment]:
        """Insert unless the reference exists; ``None`` signals the duplicate."""

    @abstractmethod
    def list_payments(self, user_id: str) -> list[Payment]:
        ...

    # Users

    @abstractmethod
    def find_user_id_by_email(self, email: str) -> Optional[str]:
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        """Return ``{"id", "email", "name"}`` for receipts and audit lines."""

    # Topic switch requests

    @abstractmethod
    def insert_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        ...

    @abstractmethod
    def get_switch_request(self, request_id: str, *, for_update: bool = False) -> Optional[TopicSwitchRequest]:
        ...

    @abstractmethod
    def find_pending_switch_request(self, project_id: str) -> Optional[TopicSwitchRequest]:
        ...

    @abstractmethod
    def save_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        ...

    @abstractmethod
    def list_switch_requests(self, status: Optional[SwitchRequestStatus] = None) -> list[TopicSwitchRequest]:
        ...


class ProjectStore(ABC):
    """Factory for transactional sessions."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreSession]:
        """Open a transaction; commit on clean exit, roll back on error."""
