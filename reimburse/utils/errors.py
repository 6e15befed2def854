"""Standardised API error responses.

Usage
-----
    from reimburse.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Settlement not found")
    return api_error(E.VALIDATION_INVALID, "Request is invalid",
                     details={"errors": ["Payee is required"]})

Services raise ``reimburse.core.exceptions`` types;
``register_error_handlers`` turns them into this envelope app-wide.
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from reimburse.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class E:
    """Machine-readable error code constants."""

    # Malformed input – HTTP 400
    INVALID_ARGUMENT = "ERR_INVALID_ARGUMENT"

    # Business-rule validation – HTTP 422
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity / permissions
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Transient I/O – HTTP 502
    STORAGE = "ERR_STORAGE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    RATE_LIMITED = "ERR_RATE_LIMITED"


_DEFAULT_STATUS: dict[str, int] = {
    E.INVALID_ARGUMENT: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.STORAGE: 502,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.RATE_LIMITED: 429,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (validation error list, offending ids).

    Returns
    -------
    tuple[Response, int]
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map service exceptions and framework errors to the error envelope."""

    @app.errorhandler(ValidationError)
    def _validation(exc):
        details = dict(exc.details)
        if exc.errors:
            details["errors"] = exc.errors
        return api_error(E.VALIDATION_INVALID, str(exc), details=details)

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        logger.info("Conflict: %s", exc)
        return api_error(E.CONFLICT_STATE, str(exc))

    @app.errorhandler(AuthenticationError)
    def _unauthenticated(exc):
        return api_error(E.UNAUTHENTICATED, str(exc) or "Authentication required")

    @app.errorhandler(AuthorizationError)
    def _forbidden(exc):
        return api_error(E.FORBIDDEN, str(exc) or "Forbidden")

    @app.errorhandler(InvalidArgumentError)
    def _invalid_argument(exc):
        return api_error(E.INVALID_ARGUMENT, str(exc))

    @app.errorhandler(StorageError)
    def _storage(exc):
        logger.error("Storage failure: %s", exc, extra={"storage_path": exc.path})
        return api_error(E.STORAGE, "File storage is temporarily unavailable")

    @app.errorhandler(404)
    def _http_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.INVALID_ARGUMENT, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.INVALID_ARGUMENT, "Request body too large", status=413)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
