"""
SQLAlchemy mixin for soft delete functionality.

Tables that take part in the deletion lifecycle carry a nullable
``deleted_at``/``deleted_by`` pair. A null ``deleted_at`` means the record is
active.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, Query, Session, declared_attr, mapped_column

from ..config import RETENTION_WINDOW_DAYS

RETENTION_WINDOW = timedelta(days=RETENTION_WINDOW_DAYS)


class SoftDeleteMixin:
    """
    Mixin to add soft delete columns to SQLAlchemy models.

    Provides:
    - ``deleted_at`` / ``deleted_by`` columns
    - A check constraint keeping the two columns null or non-null together
    - Deletion age and restore window helpers
    - Query helpers for active, deleted and purge-eligible rows

    Usage:
        class Post(Base, SoftDeleteMixin):
            __tablename__ = 'post'
            id = mapped_column(Integer, primary_key=True)
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    @declared_attr
    def __table_args__(cls: Any) -> Any:
        """Add the deletion consistency constraint."""
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        return (
            CheckConstraint(
                "(deleted_at IS NULL AND deleted_by IS NULL) OR "
                "(deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
                name=f"ck_{table_name}_deletion_consistency",
            ),
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def deletion_age(self, now: datetime) -> Optional[timedelta]:
        """Time elapsed since the soft delete, or None for active records."""
        if self.deleted_at is None:
            return None
        return now - self.deleted_at

    def is_restorable(self, now: datetime) -> bool:
        """True while the record is deleted and inside the restore window."""
        age = self.deletion_age(now)
        return age is not None and age <= RETENTION_WINDOW

    def is_purge_eligible(self, now: datetime) -> bool:
        """True once the restore window has elapsed, swept or not."""
        age = self.deletion_age(now)
        return age is not None and age > RETENTION_WINDOW

    @classmethod
    def query_active(cls, session: Session) -> Query[Any]:
        """Return query for active (non-deleted) records only."""
        return session.query(cls).filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls, session: Session) -> Query[Any]:
        """Return query for soft-deleted records only."""
        return session.query(cls).filter(cls.deleted_at.is_not(None))

    @classmethod
    def query_purge_eligible(cls, session: Session, cutoff: datetime) -> Query[Any]:
        """
        Return query for records deleted before ``cutoff``.

        Args:
            session: SQLAlchemy session
            cutoff: ``now - retention window``

        Returns:
            Query filtered to purge-eligible records
        """
        return session.query(cls).filter(
            cls.deleted_at.is_not(None), cls.deleted_at < cutoff
        )

    def to_dict(self, include_deleted_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to a JSON-safe dictionary.

        Args:
            include_deleted_fields: Whether to include soft delete fields

        Returns:
            Dictionary representation of the model
        """
        result = row_to_dict(self)

        if not include_deleted_fields:
            result.pop("deleted_at", None)
            result.pop("deleted_by", None)

        return result


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Snapshot any mapped row, soft-deletable or not, as JSON-safe values."""
    result: Dict[str, Any] = {}

    table = getattr(row, "__table__", None)
    if table is None:
        return result

    for column in table.columns:
        value = getattr(row, column.key, None)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        result[column.key] = value

    return result
