"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi run-job approval_timeout_scan
    flask --app wsgi run-job approval_deadline_reminders
"""

from airops import create_app

app = create_app()
