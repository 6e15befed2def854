"""Shared helpers for blueprints and services.

parse_date:            returns None on bad input
commit_or_raise:       commit, rolling back and re-raising on failure
json_body:             request JSON as a dict, or InvalidArgumentError
"""
import logging
from datetime import date, datetime

from flask import request

from reimburse.core.exceptions import ConflictError, InvalidArgumentError
from reimburse.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse an ISO ``YYYY-MM-DD`` string (or datetime ISO) to a date.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        return None


def commit_or_raise(resource: str = "record"):
    """Commit the current session; on failure roll back and re-raise.

    IntegrityError becomes ConflictError (duplicate key).  Everything else
    propagates unchanged after the rollback so the caller sees the original
    failure and the session is usable again.
    """
    from sqlalchemy.exc import IntegrityError

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, "id", message=f"{resource} violates a uniqueness constraint") from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgumentError("Request body must be a JSON object")
    return data
