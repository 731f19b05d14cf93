"""
Core audit logger implementation.

Provides the AuditLogger class used by the lifecycle manager and the sweeper to
record every lifecycle transition.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from ..config import RetentionConfig, get_config
from ..time_utils import Clock, utcnow
from .models import AuditAction, AuditEntry, AuditQuery
from .storage import AuditStorage

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only audit log for record lifecycle transitions.

    Entries written while a record-level transaction is open join that
    transaction by passing its ``session``, so a rolled back permanent delete
    leaves no ``permanent_delete`` entry behind. Sweep-level entries are
    written in their own short transactions.

    Example:
        >>> audit = AuditLogger(session_factory)
        >>> await audit.log_action(
        ...     AuditAction.SOFT_DELETE,
        ...     target_table="post",
        ...     target_id="42",
        ...     actor_id="admin-1",
        ...     reason="policy violation",
        ... )

    Note:
        Every stored entry carries a checksum and is also emitted on the
        ``retention_toolkit.audit_trail.logger`` logger at INFO level.
    """

    def __init__(
        self,
        session_factory: sessionmaker,  # type: ignore[type-arg]
        storage: Optional[AuditStorage] = None,
        config: Optional[RetentionConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the audit logger.

        Args:
            session_factory: Session factory bound to the application database.
            storage: Storage backend for audit entries. Defaults to SQL storage
                on ``session_factory``.
            config: Toolkit configuration. Defaults to the global config.
            clock: Callable returning the current naive UTC time.
        """
        self.session_factory = session_factory
        self.storage = storage or AuditStorage(session_factory)
        self.config = config or get_config()
        self.clock = clock or utcnow

    async def log_action(
        self,
        action: Union[str, AuditAction],
        target_table: str,
        target_id: Optional[Any] = None,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> AuditEntry:
        """
        Record an audit log entry.

        Args:
            action: Lifecycle transition
            target_table: Table affected, or ``system`` for sweep entries
            target_id: Record affected
            actor_id: Actor performing the action; None for the system
            reason: Free-text reason
            metadata: Snapshot, cascade counts or sweep statistics
            session: Open transaction to join

        Returns:
            The stored entry
        """
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            created_at=self.clock(),
            actor_id=actor_id,
            action=AuditAction(action),
            target_table=target_table,
            target_id=str(target_id) if target_id is not None else None,
            reason=reason,
            metadata=metadata,
            application=self.config.application_name,
        )
        entry = entry.model_copy(
            update={
                "checksum": entry.calculate_checksum(
                    self.config.audit_checksum_algorithm.value
                )
            }
        )

        self.storage.store(entry, session=session)
        logger.info(entry.to_log_format())

        return entry

    async def query(self, query: AuditQuery) -> List[AuditEntry]:
        """
        Query audit entries.

        Args:
            query: Query parameters

        Returns:
            List of matching entries
        """
        return self.storage.query(query)

    async def count(self, query: AuditQuery) -> int:
        """Total number of entries matching ``query``."""
        return self.storage.count(query)

    async def get_entity_history(
        self, target_table: str, target_id: Any, limit: int = 1000
    ) -> List[AuditEntry]:
        """
        Get the complete lifecycle history of one record, oldest first.

        Args:
            target_table: Table of the record
            target_id: Record identifier
            limit: Maximum entries returned

        Returns:
            List of audit entries for the record
        """
        query = AuditQuery(
            target_tables=[target_table],
            target_ids=[str(target_id)],
            sort_desc=False,
            limit=limit,
        )
        return await self.query(query)

    async def latest(self, action: Union[str, AuditAction]) -> Optional[AuditEntry]:
        """Most recent entry for an action."""
        return self.storage.latest(AuditAction(action))

    async def purge_older_than(
        self, cutoff: datetime, session: Optional[Session] = None
    ) -> int:
        """
        Remove entries created before ``cutoff``.

        Args:
            cutoff: Entries older than this are removed
            session: Open transaction to join

        Returns:
            Number of entries removed
        """
        purged = self.storage.purge_older_than(cutoff, session=session)
        if purged:
            logger.info(
                f"Purged {purged} audit log entries created before "
                f"{cutoff.isoformat()}"
            )
        return purged

    async def verify_integrity(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Verify checksums of stored entries.

        Args:
            start_date: Optional start date
            end_date: Optional end date

        Returns:
            Integrity verification results
        """
        results = self.storage.verify_integrity(
            start_date=start_date, end_date=end_date
        )
        if results["invalid"]:
            logger.warning(
                f"Audit log integrity check found {results['invalid']} invalid "
                f"entries out of {results['total_checked']}"
            )
        return results
