# givecart/models/mixins.py
"""Shared SQLAlchemy mixins."""

from datetime import datetime, timezone

from sqlalchemy import event

from givecart.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CreatedAtMixin:
    """Adds an indexed created_at column (rows that are never updated)."""

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)


class TimestampMixin(CreatedAtMixin):
    """Adds created_at and updated_at columns with auto-refresh behavior."""

    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        index=True,
    )

    @staticmethod
    def _set_updated_at(mapper, connection, target):
        """Ensure updated_at is always refreshed before update."""
        target.updated_at = utcnow()

    @classmethod
    def __declare_last__(cls):
        event.listen(cls, "before_update", cls._set_updated_at)
