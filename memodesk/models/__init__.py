"""
Memo Desk — SQLAlchemy extension instance.

Every model module imports ``db`` from here so that a single
Flask-SQLAlchemy registry backs the whole application.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
