"""
SQL storage for the audit log.

The table is append-only: ORM updates and deletes of stored rows are rejected.
Entries leave the table only through ``purge_older_than``, which the sweeper
calls with the long audit retention cutoff.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, String, Text, asc, desc, event
from sqlalchemy.orm import Session, sessionmaker

from ..database import Base
from .models import AuditAction, AuditEntry, AuditQuery


class AuditLogDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for audit log entries."""

    __tablename__ = "audit_log"

    id = Column(String(50), primary_key=True)
    created_at = Column(DateTime, nullable=False, index=True)

    actor_id = Column(String(100), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    target_table = Column(String(100), nullable=False)
    target_id = Column(String(100), nullable=True)

    reason = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
    application = Column(String(100), nullable=False)

    checksum = Column(String(128), nullable=False)

    __table_args__ = (
        Index("idx_audit_log_target", target_table, target_id),
        Index("idx_audit_log_action_created", action, created_at),
    )


def _reject_mutation(mapper: Any, connection: Any, target: AuditLogDB) -> None:
    raise RuntimeError(
        f"Audit log entry {target.id} is immutable and cannot be modified or deleted"
    )


event.listen(AuditLogDB, "before_update", _reject_mutation)
event.listen(AuditLogDB, "before_delete", _reject_mutation)


class AuditStorage:
    """Audit log persistence on top of a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):  # type: ignore[type-arg]
        """
        Initialize SQL audit storage.

        Args:
            session_factory: Session factory bound to the application database
        """
        self.session_factory = session_factory

    @contextmanager
    def _session(self, session: Optional[Session]) -> Iterator[Session]:
        # Join the caller's transaction when one is given
        if session is not None:
            yield session
            return
        with self.session_factory.begin() as own_session:
            yield own_session

    def _entry_to_db(self, entry: AuditEntry) -> AuditLogDB:
        """Convert AuditEntry to database model."""
        return AuditLogDB(
            id=entry.id,
            created_at=entry.created_at,
            actor_id=entry.actor_id,
            action=entry.action,
            target_table=entry.target_table,
            target_id=entry.target_id,
            reason=entry.reason,
            metadata_=entry.metadata,
            application=entry.application,
            checksum=entry.checksum or entry.calculate_checksum(),
        )

    def _db_to_entry(self, db_entry: AuditLogDB) -> AuditEntry:
        """Convert database model to AuditEntry."""
        return AuditEntry(
            id=db_entry.id,
            created_at=db_entry.created_at,
            actor_id=db_entry.actor_id,
            action=db_entry.action,
            target_table=db_entry.target_table,
            target_id=db_entry.target_id,
            reason=db_entry.reason,
            metadata=db_entry.metadata_,
            application=db_entry.application,
            checksum=db_entry.checksum,
        )

    def store(self, entry: AuditEntry, session: Optional[Session] = None) -> None:
        """
        Store a single audit entry.

        Args:
            entry: Audit entry to store
            session: Session of an open transaction to join; a new
                transaction is used when omitted
        """
        with self._session(session) as s:
            s.add(self._entry_to_db(entry))
            s.flush()

    def _apply_filters(self, q: Any, query: AuditQuery) -> Any:
        if query.start_date:
            q = q.filter(AuditLogDB.created_at >= query.start_date)
        if query.end_date:
            q = q.filter(AuditLogDB.created_at <= query.end_date)
        if query.actor_ids:
            q = q.filter(AuditLogDB.actor_id.in_(query.actor_ids))
        if query.system_only:
            q = q.filter(AuditLogDB.actor_id.is_(None))
        if query.actions:
            q = q.filter(
                AuditLogDB.action.in_([AuditAction(a).value for a in query.actions])
            )
        if query.target_tables:
            q = q.filter(AuditLogDB.target_table.in_(query.target_tables))
        if query.target_ids:
            q = q.filter(AuditLogDB.target_id.in_(query.target_ids))
        return q

    def query(
        self, query: AuditQuery, session: Optional[Session] = None
    ) -> List[AuditEntry]:
        """Query audit entries with filters."""
        with self._session(session) as s:
            q = self._apply_filters(s.query(AuditLogDB), query)

            if query.sort_desc:
                q = q.order_by(desc(AuditLogDB.created_at), desc(AuditLogDB.id))
            else:
                q = q.order_by(asc(AuditLogDB.created_at), asc(AuditLogDB.id))

            q = q.limit(query.limit).offset(query.offset)

            return [self._db_to_entry(r) for r in q.all()]

    def count(self, query: AuditQuery, session: Optional[Session] = None) -> int:
        """Count entries matching a query, ignoring pagination."""
        with self._session(session) as s:
            return self._apply_filters(s.query(AuditLogDB), query).count()

    def get_by_id(
        self, entry_id: str, session: Optional[Session] = None
    ) -> Optional[AuditEntry]:
        """Get a specific audit entry."""
        with self._session(session) as s:
            db_entry = s.query(AuditLogDB).filter(AuditLogDB.id == entry_id).first()
            if db_entry:
                return self._db_to_entry(db_entry)
            return None

    def latest(
        self, action: AuditAction, session: Optional[Session] = None
    ) -> Optional[AuditEntry]:
        """Most recent entry for an action."""
        with self._session(session) as s:
            db_entry = (
                s.query(AuditLogDB)
                .filter(AuditLogDB.action == AuditAction(action).value)
                .order_by(desc(AuditLogDB.created_at))
                .first()
            )
            return self._db_to_entry(db_entry) if db_entry else None

    def purge_older_than(
        self, cutoff: datetime, session: Optional[Session] = None
    ) -> int:
        """
        Remove entries created before ``cutoff``.

        The bulk delete bypasses the per-row immutability listener.

        Returns:
            Number of entries removed
        """
        with self._session(session) as s:
            return (
                s.query(AuditLogDB)
                .filter(AuditLogDB.created_at < cutoff)
                .delete(synchronize_session=False)
            )

    def verify_integrity(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        session: Optional[Session] = None,
    ) -> Dict[str, Any]:
        """Recalculate checksums for stored entries."""
        results: Dict[str, Any] = {
            "total_checked": 0,
            "valid": 0,
            "invalid": 0,
            "invalid_entries": [],
        }

        with self._session(session) as s:
            q = s.query(AuditLogDB)
            if start_date:
                q = q.filter(AuditLogDB.created_at >= start_date)
            if end_date:
                q = q.filter(AuditLogDB.created_at <= end_date)

            for db_entry in q.order_by(asc(AuditLogDB.created_at)).all():
                results["total_checked"] += 1
                if self._db_to_entry(db_entry).verify_checksum():
                    results["valid"] += 1
                else:
                    results["invalid"] += 1
                    results["invalid_entries"].append(db_entry.id)

        return results
