"""
Phase Access Platform — SQLAlchemy models.

The ``db`` instance is created here and bound in ``create_app``.

Usage:
    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
