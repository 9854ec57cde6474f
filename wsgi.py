"""
WSGI entry point and Flask-Migrate / Alembic entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi create-charity --name "Example Trust" --charid AB12345
"""

from app import create_app

app = create_app()
