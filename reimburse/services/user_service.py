"""
User profile service: provisioning, profile edits, role administration.

Profiles are created lazily on the first authenticated call.  Submission
flows copy phone/bank details back to the profile so the next form is
pre-filled (see ``copy_back_submission_fields``).
"""

import logging

from sqlalchemy import select

from reimburse.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from reimburse.models import COMMITTEES, ROLES, db
from reimburse.models.audit import write_audit
from reimburse.models.user import AppUser
from reimburse.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

# Fields a user may edit on their own profile (camelCase → column)
EDITABLE_PROFILE_FIELDS = {
    "displayName": "display_name",
    "phone": "phone",
    "bankName": "bank_name",
    "bankAccount": "bank_account",
    "defaultCommittee": "default_committee",
    "signature": "signature",
}


def get_or_provision_user(uid: str, email: str = "", name: str = "") -> AppUser:
    user = db.session.get(AppUser, uid)
    if user is not None:
        return user

    user = AppUser(uid=uid, email=email, name=name, display_name=name, role="user", project_ids=[])
    db.session.add(user)
    write_audit(entity_type="user", entity_id=uid, action="user.provision", actor_uid=uid)
    commit_or_raise("AppUser")
    logger.info("Provisioned user %s", uid, extra={"actor_uid": uid})
    return user


def get_user(uid: str) -> AppUser:
    user = db.session.get(AppUser, uid)
    if user is None:
        raise NotFoundError(resource="AppUser", resource_id=uid)
    return user


def update_profile(user: AppUser, data: dict) -> AppUser:
    errors = []
    changes = {}
    for key, column in EDITABLE_PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be a string")
            continue
        value = (value or "").strip() if column != "signature" else value
        if column == "default_committee" and value not in COMMITTEES:
            errors.append(f"Unknown committee: {value}")
            continue
        old = getattr(user, column)
        if old != value:
            changes[column] = {"old": old if column != "signature" else None, "new": value if column != "signature" else "<updated>"}
            setattr(user, column, value)
    if errors:
        db.session.rollback()
        raise ValidationError("Profile update is invalid", errors=errors)

    if changes:
        write_audit(entity_type="user", entity_id=user.uid, action="user.update_profile",
                    actor_uid=user.uid, diff=changes)
    commit_or_raise("AppUser")
    return user


def copy_back_submission_fields(user: AppUser, *, phone: str, bank_name: str, bank_account: str) -> dict:
    """Store the submission's phone/bank details on the profile when they differ.

    Adds to the caller's transaction; does not commit.
    """
    changes = {}
    for column, value in (("phone", phone), ("bank_name", bank_name), ("bank_account", bank_account)):
        if value and getattr(user, column) != value:
            changes[column] = {"old": getattr(user, column), "new": value}
            setattr(user, column, value)
    return changes


def record_bank_book(user: AppUser, ref: dict) -> AppUser:
    user.bank_book_url = ref["url"]
    user.bank_book_storage_path = ref["storagePath"]
    write_audit(entity_type="user", entity_id=user.uid, action="user.bank_book",
                actor_uid=user.uid, diff={"bank_book_storage_path": ref["storagePath"]})
    commit_or_raise("AppUser")
    return user


def list_users(actor: AppUser) -> list[AppUser]:
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")
    return list(db.session.scalars(select(AppUser).order_by(AppUser.created_at)))


def set_role(actor: AppUser, uid: str, role: str) -> AppUser:
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")
    if role not in ROLES:
        raise ValidationError("Unknown role", errors=[f"Role must be one of: {', '.join(sorted(ROLES))}"])
    user = get_user(uid)
    if user.uid == actor.uid and role != "admin":
        raise ValidationError("Cannot demote yourself", errors=["Admins cannot remove their own admin role"])
    old = user.role
    if old == role:
        return user
    user.role = role
    write_audit(entity_type="user", entity_id=uid, action="user.set_role",
                actor_uid=actor.uid, diff={"role": {"old": old, "new": role}})
    commit_or_raise("AppUser")
    logger.info("Role of %s changed %s -> %s", uid, old, role, extra={"actor_uid": actor.uid})
    return user
