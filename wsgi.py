"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi current-week
"""

from bcl_workflow import create_app

app = create_app()
