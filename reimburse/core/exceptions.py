"""
Service-wide exception hierarchy.

Services raise these types and never build HTTP responses themselves.
``reimburse.utils.errors.register_error_handlers`` maps each type to a
status code and the standard ``{"error", "code", "details"}`` envelope once,
for every blueprint.

Usage:
    from reimburse.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="PaymentRequest", resource_id=req_id)
    raise ValidationError("Request is invalid", errors=["Payee is required"])
"""


class NotFoundError(Exception):
    """Raised when a referenced record does not exist.

    Also used when a record exists but lives in a project the caller cannot
    see; a 403 would confirm its existence.

    Maps to HTTP 404.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    ``errors`` lists every unmet condition, in the order the checks ran, so
    the caller can show all of them at once instead of one per round trip.

    Maps to HTTP 422.

    Args:
        message: Summary sentence.
        errors: Human-readable messages, one per failed condition.
        details: Optional field-level breakdown.
    """

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        details: dict | None = None,
    ) -> None:
        self.errors = list(errors or [])
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a conditional write finds the record no longer in the
    expected state (a concurrent transition won the race), or when a unique
    value already exists.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} {field}={value!r} conflicts with current state")


class AuthenticationError(Exception):
    """No caller identity. Maps to HTTP 401."""


class AuthorizationError(Exception):
    """Caller identity present but role or ownership insufficient. Maps to HTTP 403."""


class InvalidArgumentError(Exception):
    """Malformed call arguments (empty file list, unknown committee). Maps to HTTP 400."""


class StorageError(Exception):
    """Transient object-storage failure. Maps to HTTP 502; never retried automatically."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)
