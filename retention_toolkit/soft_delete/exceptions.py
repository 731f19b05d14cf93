"""Exceptions for record lifecycle operations."""

from datetime import datetime
from typing import Any, Optional


class LifecycleError(Exception):
    """Base exception for soft delete, restore and purge operations."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        record_id: Optional[Any] = None,
    ):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(message)


class UnknownEntityTypeError(LifecycleError, ValueError):
    """Raised when a table name is not part of the entity registry."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"Unknown entity type '{entity_type}'", entity_type=entity_type
        )


class NotSoftDeletableError(LifecycleError):
    """Raised when soft delete or restore is requested for an auxiliary table."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"Entity type '{entity_type}' has no soft delete lifecycle",
            entity_type=entity_type,
        )


class RecordNotFoundError(LifecycleError):
    """Raised when no record with the given id exists."""

    def __init__(self, entity_type: str, record_id: Any):
        super().__init__(
            f"Record with ID {record_id} not found in {entity_type}",
            entity_type=entity_type,
            record_id=record_id,
        )


class AlreadyDeletedError(LifecycleError):
    """Raised when attempting to soft delete an already deleted record."""

    def __init__(self, entity_type: str, record_id: Any):
        super().__init__(
            f"Record with ID {record_id} in {entity_type} is already deleted",
            entity_type=entity_type,
            record_id=record_id,
        )


class RestoreWindowExpiredError(LifecycleError):
    """Raised when a record was deleted longer ago than the restore window."""

    def __init__(
        self,
        entity_type: str,
        record_id: Any,
        deleted_at: datetime,
        days_since_deleted: int,
        window_days: int,
    ):
        self.deleted_at = deleted_at
        self.days_since_deleted = days_since_deleted
        self.window_days = window_days
        super().__init__(
            f"Record with ID {record_id} in {entity_type} cannot be restored after "
            f"{window_days} days ({days_since_deleted} days have passed)",
            entity_type=entity_type,
            record_id=record_id,
        )


class CascadeFailure(LifecycleError):
    """Raised when a permanent delete fails and its transaction is rolled back."""

    def __init__(
        self,
        entity_type: str,
        record_id: Optional[Any],
        original: BaseException,
    ):
        self.original = original
        target = f"record {record_id}" if record_id is not None else "table"
        super().__init__(
            f"Permanent delete of {entity_type} {target} failed: {original}",
            entity_type=entity_type,
            record_id=record_id,
        )
