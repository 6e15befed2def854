"""
Reimbursement Service
SQLAlchemy database instance and shared model constants.

Every persisted record type carries ``schema_version``.  Rows written by this
code base use CURRENT_SCHEMA_VERSION; rows migrated from the legacy document
store may carry 0/None and are normalised on read.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

CURRENT_SCHEMA_VERSION = 1

COMMITTEES = frozenset({"operations", "preparation"})

ROLES = frozenset({"user", "approver", "admin"})
APPROVER_ROLES = frozenset({"approver", "admin"})
