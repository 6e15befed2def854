"""
Reimbursement Service
Bearer-token authentication.

Every /api/v1/* request (except health) may carry
``Authorization: Bearer <identity token>``.  A valid token resolves to an
AppUser, provisioned with role ``user`` on first sight, and stored on
``g.current_user``.  Invalid or missing tokens leave ``g.current_user`` unset;
``require_auth`` turns that into a 401.

Role checks are NOT done here beyond a coarse guard: services re-check roles
against the RequestContext they receive.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from reimburse.core.context import RequestContext
from reimburse.core.exceptions import AuthenticationError, AuthorizationError
from reimburse.services.jwt_service import decode_identity_token

logger = logging.getLogger(__name__)

AUTH_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _bearer_token():
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def init_auth(app):
    """Register the bearer-token hook as a before_request handler."""

    @app.before_request
    def _bearer_auth():
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in AUTH_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        token = _bearer_token()
        if token is None:
            return

        try:
            payload = decode_identity_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired identity token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected identity token on %s: %s", path, exc)
            return

        from reimburse.services.user_service import get_or_provision_user
        g.current_user = get_or_provision_user(
            payload["sub"],
            email=payload.get("email") or "",
            name=payload.get("name") or "",
        )


def current_user():
    user = getattr(g, "current_user", None)
    if user is None:
        raise AuthenticationError("Authentication required")
    return user


def require_auth(f):
    """Reject the call with 401 when no caller identity is present."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_user()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str):
    """
    Route guard on the caller's stored role.

    Usage:
        @require_role("admin")
        def set_role(uid): ...
    """

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user.role not in roles:
                raise AuthorizationError(f"Requires role: {', '.join(roles)}")
            return f(*args, **kwargs)

        return decorated

    return decorator


def build_context(project_id: str | None = None) -> RequestContext:
    """RequestContext for the caller, resolving ``project_id`` with access checks."""
    user = current_user()
    project = None
    if project_id:
        from reimburse.services.project_service import get_accessible_project
        project = get_accessible_project(user, project_id)
    return RequestContext(user=user, project=project)
