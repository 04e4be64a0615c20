"""Error taxonomy raised by the lifecycle core.

Every error carries an HTTP-equivalent ``status_code`` and a ``context``
mapping with the ids involved so the API layer can render a structured
response and operators can act on the log line.
"""

from __future__ import annotations

from typing import Any


class ProjectDeskError(RuntimeError):
    """Base error for lifecycle failures."""

    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        payload.update({key: str(value) for key, value in self.context.items()})
        return payload


class ValidationFailure(ProjectDeskError):
    status_code = 400


class Unauthorized(ProjectDeskError):
    status_code = 401


class Forbidden(ProjectDeskError):
    status_code = 403


class NotOwner(Forbidden):
    """Raised when the caller does not own the project they act on."""

    def __init__(self, project_id: str, user_id: str | None = None) -> None:
        super().__init__("Project not found or access denied", project_id=project_id, user_id=user_id)


class NotFound(ProjectDeskError):
    status_code = 404


class ProjectNotFound(NotFound):
    def __init__(self, project_id: str) -> None:
        super().__init__("Project not found", project_id=project_id)


class RequestNotFound(NotFound):
    def __init__(self, request_id: str) -> None:
        super().__init__("Request not found", request_id=request_id)


class ConflictError(ProjectDeskError):
    status_code = 409


class ProjectAlreadyLocked(ConflictError):
    """The owner already holds a locked project."""

    def __init__(self, locked_project_id: str, project_id: str | None = None) -> None:
        super().__init__(
            "Owner already has a locked project. Switch topics via support or complete the current project.",
            locked_project_id=locked_project_id,
            project_id=project_id,
        )
        self.locked_project_id = locked_project_id


class ProjectNotLocked(ConflictError):
    def __init__(self, project_id: str) -> None:
        super().__init__("Project is not locked. The topic can be edited directly.", project_id=project_id)


class RequestAlreadyPending(ConflictError):
    def __init__(self, project_id: str) -> None:
        super().__init__("A pending switch request already exists.", project_id=project_id)


class RequestAlreadyResolved(ConflictError):
    def __init__(self, request_id: str, status: str | None = None) -> None:
        super().__init__("Request already resolved", request_id=request_id, status=status)


class PaymentReconciliationError(ProjectDeskError):
    """A payment event that cannot be linked and needs manual reconciliation."""

    status_code = 422


class MissingProjectReference(PaymentReconciliationError):
    def __init__(self, reference: str) -> None:
        super().__init__("Missing projectId in payment metadata", reference=reference)


class UnresolvedPayer(PaymentReconciliationError):
    def __init__(self, reference: str, project_id: str, email: str | None = None) -> None:
        super().__init__(
            "Could not determine the paying user",
            reference=reference,
            project_id=project_id,
            email=email,
        )


class GatewayError(ProjectDeskError):
    """The payment gateway rejected or failed a request."""

    status_code = 502


class PersistenceError(ProjectDeskError):
    """Storage failure; callers and infrastructure may retry."""

    status_code = 503
