"""
Reimbursement Service
Flask Application Factory.

Usage:
    from reimburse import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from reimburse.auth import init_auth
from reimburse.config import config
from reimburse.middleware.logging_config import configure_logging
from reimburse.middleware.rate_limiter import init_rate_limits
from reimburse.middleware.timing import init_request_timing
from reimburse.models import db
from reimburse.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit: applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    # ProductionConfig validates required env vars in __init__
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing, then bearer auth ─────────────────────────────────
    init_request_timing(app)
    init_auth(app)

    # ── Error envelope ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from reimburse.blueprints.files_bp import files_bp
    from reimburse.blueprints.projects_bp import projects_bp
    from reimburse.blueprints.requests_bp import requests_bp
    from reimburse.blueprints.settlements_bp import settlements_bp
    from reimburse.blueprints.users_bp import health_bp, users_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(settlements_bp)
    app.register_blueprint(files_bp)

    # ── Tables ───────────────────────────────────────────────────────────
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        import reimburse.models.audit  # noqa: F401
        import reimburse.models.project  # noqa: F401
        import reimburse.models.request  # noqa: F401
        import reimburse.models.settlement  # noqa: F401
        import reimburse.models.user  # noqa: F401
        db.create_all()

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
