"""
WSGI entry point; also the Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
"""

from reimburse import create_app

app = create_app()
