"""
worksync
Database extension shared by every model module.

Usage:
    from worksync.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
