"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi create-super-admin admin@example.com
    flask --app wsgi run-job lock_reaper
    flask --app wsgi db upgrade
"""

from sheetgov import create_app

app = create_app()
