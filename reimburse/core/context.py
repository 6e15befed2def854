"""
Explicit caller context passed into every lifecycle and aggregator call.

Blueprints build one from ``g.current_user`` and the ``projectId`` in the
request; services never look up the current user or project themselves.
"""

from dataclasses import dataclass

from reimburse.core.exceptions import AuthorizationError
from reimburse.models import APPROVER_ROLES


@dataclass(frozen=True)
class RequestContext:
    user: object  # reimburse.models.user.AppUser
    project: object | None = None  # reimburse.models.project.Project

    @property
    def uid(self) -> str:
        return self.user.uid

    @property
    def role(self) -> str:
        return self.user.role or "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES

    @property
    def project_id(self) -> str | None:
        return self.project.id if self.project is not None else None

    def require_approver(self) -> None:
        if not self.is_approver:
            raise AuthorizationError("Approver or admin role required")

    def require_admin(self) -> None:
        if not self.is_admin:
            raise AuthorizationError("Admin role required")
