"""
Service layer for record lifecycle operations.

The LifecycleManager soft deletes, restores and permanently deletes single
records, enforcing the restore window and the cascade table. The retention
sweeper drives the same purge primitive for every purge-eligible record.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..audit_trail import AuditAction, AuditLogger
from ..config import RETENTION_WINDOW_DAYS, RetentionConfig, get_config
from ..time_utils import Clock
from .exceptions import (
    AlreadyDeletedError,
    CascadeFailure,
    LifecycleError,
    NotSoftDeletableError,
    RecordNotFoundError,
    RestoreWindowExpiredError,
)
from .mixins import RETENTION_WINDOW, row_to_dict
from .models import (
    DeletedRecord,
    DeletedRecordPage,
    LifecycleOutcome,
    LifecycleResult,
    Pagination,
    TableRetentionStats,
)
from .registry import EntityRegistration, EntityRegistry, EntityType, get_registry

logger = logging.getLogger(__name__)

EntityTypeLike = Union[EntityType, str]


class LifecycleManager:
    """
    Soft delete, restore and permanent delete for registered entity types.

    Every operation runs in its own transaction opened from
    ``session_factory``. Guarded ``UPDATE``/``DELETE`` statements and their
    affected-row counts decide the outcome when an admin call races a sweep.
    """

    def __init__(
        self,
        session_factory: sessionmaker,  # type: ignore[type-arg]
        audit_logger: Optional[AuditLogger] = None,
        registry: Optional[EntityRegistry] = None,
        config: Optional[RetentionConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            session_factory: Session factory bound to the application database
            audit_logger: Audit log; defaults to one on the same database
            registry: Entity registry; defaults to the built-in cascade table
            config: Toolkit configuration; defaults to the global config
            clock: Callable returning the current naive UTC time
        """
        self.session_factory = session_factory
        self.config = config or get_config()
        self.audit_logger = audit_logger or AuditLogger(
            session_factory, config=self.config, clock=clock
        )
        self.clock = clock or self.audit_logger.clock
        self.registry = registry or get_registry()

    async def soft_delete(
        self,
        entity_type: EntityTypeLike,
        record_id: Any,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> LifecycleResult:
        """
        Mark a record as deleted.

        Args:
            entity_type: Table of the record
            record_id: Record identifier
            actor_id: Actor performing the deletion
            reason: Optional justification

        Returns:
            Result carrying the updated record

        Raises:
            RecordNotFoundError: No such record
            AlreadyDeletedError: The record is already soft deleted
            NotSoftDeletableError: The table has no soft delete columns
        """
        registration = self._resolve(entity_type, require_soft_delete=True)
        self._require_actor(actor_id, "deletion")
        model = registration.model
        name = registration.entity_type.value
        record_id = self._coerce_id(registration, record_id)
        now = self.clock()

        with self.session_factory.begin() as session:
            record = session.get(model, record_id)
            if record is None:
                raise RecordNotFoundError(name, record_id)
            if record.deleted_at is not None:
                raise AlreadyDeletedError(name, record_id)

            affected = (
                session.query(model)
                .filter(model.id == record_id, model.deleted_at.is_(None))
                .update(
                    {model.deleted_at: now, model.deleted_by: actor_id.strip()},
                    synchronize_session=False,
                )
            )
            if affected == 0:
                raise AlreadyDeletedError(name, record_id)

            session.refresh(record)
            snapshot = record.to_dict()
            entry = await self.audit_logger.log_action(
                AuditAction.SOFT_DELETE,
                target_table=name,
                target_id=record_id,
                actor_id=actor_id.strip(),
                reason=reason,
                session=session,
            )

        logger.info(f"Soft deleted {name} record {record_id} by {actor_id}")

        return LifecycleResult(
            outcome=LifecycleOutcome.SOFT_DELETED,
            entity_type=name,
            record_id=str(record_id),
            record=snapshot,
            audit_entry_id=entry.id,
        )

    async def restore(
        self,
        entity_type: EntityTypeLike,
        record_id: Any,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> LifecycleResult:
        """
        Clear the deletion marker of a record inside the restore window.

        Restoring an active record succeeds without writing anything.

        Args:
            entity_type: Table of the record
            record_id: Record identifier
            actor_id: Actor performing the restoration
            reason: Optional justification

        Returns:
            Result carrying the restored record

        Raises:
            RecordNotFoundError: No such record, or it was purged meanwhile
            RestoreWindowExpiredError: Deleted longer ago than the window
        """
        registration = self._resolve(entity_type, require_soft_delete=True)
        self._require_actor(actor_id, "restoration")
        model = registration.model
        name = registration.entity_type.value
        record_id = self._coerce_id(registration, record_id)
        now = self.clock()
        cutoff = now - RETENTION_WINDOW

        with self.session_factory.begin() as session:
            record = session.get(model, record_id)
            if record is None:
                raise RecordNotFoundError(name, record_id)

            if record.deleted_at is None:
                logger.info(
                    f"{name} record {record_id} is not deleted; nothing to restore"
                )
                return self._already_active(name, record_id, record.to_dict())

            deleted_at = record.deleted_at
            deleted_by = record.deleted_by
            self._check_restore_window(name, record_id, deleted_at, now)

            affected = (
                session.query(model)
                .filter(
                    model.id == record_id,
                    model.deleted_at.is_not(None),
                    model.deleted_at >= cutoff,
                )
                .update(
                    {model.deleted_at: None, model.deleted_by: None},
                    synchronize_session=False,
                )
            )
            if affected == 0:
                return self._classify_lost_restore(
                    session, registration, record_id, now
                )

            session.refresh(record)
            snapshot = record.to_dict()
            entry = await self.audit_logger.log_action(
                AuditAction.RESTORE,
                target_table=name,
                target_id=record_id,
                actor_id=actor_id.strip(),
                reason=reason,
                metadata={
                    "deleted_at": deleted_at.isoformat(),
                    "deleted_by": deleted_by,
                    "days_since_deleted": (now - deleted_at).days,
                },
                session=session,
            )

        logger.info(f"Restored {name} record {record_id} by {actor_id}")

        return LifecycleResult(
            outcome=LifecycleOutcome.RESTORED,
            entity_type=name,
            record_id=str(record_id),
            record=snapshot,
            audit_entry_id=entry.id,
        )

    async def permanent_delete(
        self,
        entity_type: EntityTypeLike,
        record_id: Any,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> LifecycleResult:
        """
        Remove a record and its auxiliary rows, active or not.

        Args:
            entity_type: Table of the record
            record_id: Record identifier
            actor_id: Actor performing the deletion
            reason: Optional justification

        Returns:
            Result carrying the pre-deletion snapshot and cascade counts

        Raises:
            RecordNotFoundError: No such record
            CascadeFailure: The transaction failed and was rolled back
        """
        registration = self._resolve(entity_type)
        self._require_actor(actor_id, "permanent deletion")
        record_id = self._coerce_id(registration, record_id)

        result = await self._purge(registration, record_id, actor_id.strip(), reason)
        if result is None:
            raise RecordNotFoundError(registration.entity_type.value, record_id)
        return result

    async def purge_expired(
        self,
        entity_type: EntityTypeLike,
        record_id: Any,
        cutoff: datetime,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Purge a record only if it is still deleted before ``cutoff``.

        Args:
            entity_type: Table of the record
            record_id: Record identifier
            cutoff: ``now - retention window`` of the calling sweep
            actor_id: None for the scheduler
            reason: Reason recorded in the audit entry

        Returns:
            False when the record was restored or purged meanwhile

        Raises:
            CascadeFailure: The transaction failed and was rolled back
        """
        registration = self._resolve(entity_type, require_soft_delete=True)
        record_id = self._coerce_id(registration, record_id)
        if reason is None:
            reason = f"Retention window of {RETENTION_WINDOW_DAYS} days elapsed"

        result = await self._purge(
            registration, record_id, actor_id, reason, cutoff=cutoff
        )
        return result is not None

    async def list_deleted(
        self,
        entity_type: EntityTypeLike,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> DeletedRecordPage:
        """
        List soft-deleted records, most recently deleted first.

        Args:
            entity_type: Table to list
            page: 1-based page number
            limit: Records per page; defaults to ``config.default_page_size``

        Returns:
            Page of records annotated with age and restorability
        """
        registration = self._resolve(entity_type, require_soft_delete=True)
        model = registration.model
        if limit is None:
            limit = self.config.default_page_size

        if page < 1:
            raise ValueError("Page must be 1 or greater")
        if limit < 1 or limit > self.config.max_page_size:
            raise ValueError(
                f"Limit must be between 1 and {self.config.max_page_size}"
            )

        now = self.clock()
        with self.session_factory() as session:
            deleted = model.query_deleted(session)
            total = deleted.count()
            rows = (
                deleted.order_by(model.deleted_at.desc(), model.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
                .all()
            )
            records = [
                DeletedRecord(
                    record=row.to_dict(),
                    deleted_at=row.deleted_at,
                    deleted_by=row.deleted_by,
                    deletion_age_days=row.deletion_age(now).days,
                    restorable=row.is_restorable(now),
                )
                for row in rows
            ]

        return DeletedRecordPage(
            entity_type=registration.entity_type.value,
            records=records,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit),
            ),
        )

    def purge_eligible_ids(
        self, entity_type: EntityTypeLike, cutoff: datetime
    ) -> List[Any]:
        """Ids of records deleted before ``cutoff``, oldest deletion first."""
        registration = self._resolve(entity_type, require_soft_delete=True)
        model = registration.model
        with self.session_factory() as session:
            rows = (
                session.query(model.id)
                .filter(model.deleted_at.is_not(None), model.deleted_at < cutoff)
                .order_by(model.deleted_at.asc(), model.id.asc())
                .all()
            )
        return [row[0] for row in rows]

    def get_retention_stats(self) -> List[TableRetentionStats]:
        """Soft-deleted counts per table, split at the restore window."""
        cutoff = self.clock() - RETENTION_WINDOW
        stats: List[TableRetentionStats] = []

        with self.session_factory() as session:
            for entity_type in self.registry.sweep_order():
                model = self.registry.get(entity_type).model
                total = model.query_deleted(session).count()
                ready = model.query_purge_eligible(session, cutoff).count()
                stats.append(
                    TableRetentionStats(
                        entity_type=entity_type.value,
                        total_deleted=total,
                        within_retention=total - ready,
                        ready_for_cleanup=ready,
                    )
                )

        return stats

    async def _purge(
        self,
        registration: EntityRegistration,
        record_id: Any,
        actor_id: Optional[str],
        reason: Optional[str],
        cutoff: Optional[datetime] = None,
    ) -> Optional[LifecycleResult]:
        """Cascade-and-delete one record inside one transaction."""
        model = registration.model
        name = registration.entity_type.value

        try:
            with self.session_factory.begin() as session:
                query = session.query(model).filter(model.id == record_id)
                if cutoff is not None:
                    query = query.filter(
                        model.deleted_at.is_not(None), model.deleted_at < cutoff
                    )
                record = query.first()
                if record is None:
                    return None

                snapshot = row_to_dict(record)
                cascade = self._delete_auxiliaries(session, registration, record_id)

                affected = (
                    session.query(model)
                    .filter(model.id == record_id)
                    .delete(synchronize_session=False)
                )
                if affected == 0:
                    return None

                entry = await self.audit_logger.log_action(
                    AuditAction.PERMANENT_DELETE,
                    target_table=name,
                    target_id=record_id,
                    actor_id=actor_id,
                    reason=reason,
                    metadata={"snapshot": snapshot, "cascade": cascade},
                    session=session,
                )
        except LifecycleError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Permanent delete of {name} record {record_id} failed: {e}")
            raise CascadeFailure(name, record_id, e) from e

        logger.info(
            f"Permanently deleted {name} record {record_id} "
            f"({sum(cascade.values())} auxiliary rows)"
        )

        return LifecycleResult(
            outcome=LifecycleOutcome.PURGED,
            entity_type=name,
            record_id=str(record_id),
            record=snapshot,
            cascade=cascade,
            audit_entry_id=entry.id,
        )

    def _delete_auxiliaries(
        self, session: Session, registration: EntityRegistration, record_id: Any
    ) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for ref in self.registry.auxiliary_refs(registration.entity_type):
            aux_model = self.registry.get(ref.entity_type).model
            conditions = [
                getattr(aux_model, column) == record_id for column in ref.columns
            ]
            deleted = (
                session.query(aux_model)
                .filter(or_(*conditions))
                .delete(synchronize_session=False)
            )
            name = ref.entity_type.value
            counts[name] = counts.get(name, 0) + deleted
        return counts

    def _classify_lost_restore(
        self,
        session: Session,
        registration: EntityRegistration,
        record_id: Any,
        now: datetime,
    ) -> LifecycleResult:
        # The guarded update matched nothing; another transaction changed the
        # row between our read and our write.
        model = registration.model
        name = registration.entity_type.value
        current = (
            session.query(model)
            .populate_existing()
            .filter(model.id == record_id)
            .first()
        )
        if current is None:
            raise RecordNotFoundError(name, record_id)
        if current.deleted_at is None:
            return self._already_active(name, record_id, current.to_dict())
        self._check_restore_window(name, record_id, current.deleted_at, now)
        # Other transactions restored and deleted the row again between our
        # update and this read.
        raise LifecycleError(
            f"Restore of {name} record {record_id} did not apply",
            entity_type=name,
            record_id=record_id,
        )

    @staticmethod
    def _already_active(
        name: str, record_id: Any, snapshot: Dict[str, Any]
    ) -> LifecycleResult:
        return LifecycleResult(
            outcome=LifecycleOutcome.ALREADY_ACTIVE,
            entity_type=name,
            record_id=str(record_id),
            record=snapshot,
        )

    @staticmethod
    def _check_restore_window(
        name: str, record_id: Any, deleted_at: datetime, now: datetime
    ) -> None:
        age = now - deleted_at
        if age > RETENTION_WINDOW:
            raise RestoreWindowExpiredError(
                name,
                record_id,
                deleted_at=deleted_at,
                days_since_deleted=age.days,
                window_days=RETENTION_WINDOW_DAYS,
            )

    def _resolve(
        self, entity_type: EntityTypeLike, require_soft_delete: bool = False
    ) -> EntityRegistration:
        registration = self.registry.get(entity_type)
        if require_soft_delete and not registration.soft_deletable:
            raise NotSoftDeletableError(registration.entity_type.value)
        return registration

    @staticmethod
    def _coerce_id(registration: EntityRegistration, record_id: Any) -> Any:
        # Ids arrive as strings from the web layer and the CLI
        if isinstance(record_id, str):
            pk_type = registration.model.__table__.c.id.type
            if pk_type.python_type is int and record_id.strip().lstrip("-").isdigit():
                return int(record_id)
        return record_id

    @staticmethod
    def _require_actor(actor_id: Optional[str], operation: str) -> None:
        if not actor_id or not str(actor_id).strip():
            raise ValueError(f"Actor ID is required for {operation}")
