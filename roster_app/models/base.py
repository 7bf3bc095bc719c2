# roster_app/models/base.py

from datetime import datetime, timezone

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


class BaseModel(db.Model):
    """Abstract base carrying timestamps and safe persistence helpers"""

    __abstract__ = True

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def save(self):
        """Add to the session and commit, rolling back on failure"""
        try:
            db.session.add(self)
            db.session.commit()
            return self
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def delete(self):
        try:
            db.session.delete(self)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    @classmethod
    def safe_create(cls, **kwargs):
        """Create and commit an instance. Returns ``(instance, error)``."""
        try:
            instance = cls(**kwargs)
            db.session.add(instance)
            db.session.commit()
            return instance, None
        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.warning(f"Integrity error creating {cls.__name__}: {str(e.orig)}")
            return None, "A record with these values already exists"
        except (SQLAlchemyError, ValueError) as e:
            db.session.rollback()
            current_app.logger.error(f"Database error creating {cls.__name__}: {str(e)}")
            return None, str(e)

    def safe_update(self, **kwargs):
        """Apply attribute updates and commit. Returns ``(success, error)``."""
        try:
            for key, value in kwargs.items():
                if not hasattr(self, key):
                    raise ValueError(f"{type(self).__name__} has no attribute '{key}'")
                setattr(self, key, value)
            db.session.commit()
            return True, None
        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.warning(f"Integrity error updating {type(self).__name__}: {str(e.orig)}")
            return False, "A record with these values already exists"
        except (SQLAlchemyError, ValueError) as e:
            db.session.rollback()
            current_app.logger.error(f"Database error updating {type(self).__name__}: {str(e)}")
            return False, str(e)

    def safe_delete(self):
        try:
            db.session.delete(self)
            db.session.commit()
            return True, None
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Database error deleting {type(self).__name__}: {str(e)}")
            return False, str(e)
