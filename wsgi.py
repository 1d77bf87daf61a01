"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run-digest     # one-off digest run
"""

from labstock import create_app

app = create_app()
