"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi seed-actors --department "General Affairs"
"""

from memodesk import create_app

app = create_app()
