"""
Rate limiting configuration.

The Limiter instance is created in reimburse/__init__.py with no default
limits; this module applies limits per blueprint after registration.

Usage:
    from reimburse.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

UPLOAD_LIMIT = "20/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - File uploads/downloads: 20/minute (base64 payloads up to 2 MB each)
        - Request/settlement/project routes: 60/minute
        - User routes: 200/minute
        - Health check: exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("files")
    if bp:
        limiter.limit(UPLOAD_LIMIT)(bp)

    for bp_name in ("requests", "settlements", "projects"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("users")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: files=%s write=%s read=%s",
                UPLOAD_LIMIT, WRITE_LIMIT, READ_LIMIT)
