"""Caller identity and project ownership checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from project_desk_schemas import AnonymousOwner, AuthenticatedOwner, Project

from .errors import ProjectNotFound, Unauthorized
from .store import OwnerRef


@dataclass(frozen=True)
class CallerIdentity:
    """Who is calling: a signed-in user, an anonymous browser, or both."""

    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    is_admin: bool = False

    def owners(self) -> list[OwnerRef]:
        owners: list[OwnerRef] = []
        if self.user_id:
            owners.append(AuthenticatedOwner(user_id=self.user_id))
        if self.anonymous_id:
            owners.append(AnonymousOwner(anonymous_id=self.anonymous_id))
        if not owners:
            raise Unauthorized("Unauthorized")
        return owners

    def primary_owner(self) -> OwnerRef:
        return self.owners()[0]

    def owns(self, project: Project) -> bool:
        owner = project.owner
        if isinstance(owner, AuthenticatedOwner):
            return bool(self.user_id) and owner.user_id == self.user_id
        return bool(self.anonymous_id) and owner.anonymous_id == self.anonymous_id


def ensure_access(project: Project, caller: Optional[CallerIdentity]) -> None:
    """Owners and admins pass; ``None`` means an internal caller.

    Anyone else gets the same 404 as for a missing project, so project ids
    are not disclosed to non-owners.
    """

    if caller is None or caller.is_admin or caller.owns(project):
        return
    raise ProjectNotFound(project.id)
