"""
Data models returned by the lifecycle manager and the retention sweeper.

These are plain pydantic models so the web layer can serialize them directly.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LifecycleOutcome(str, Enum):
    """What a successful lifecycle call did."""

    SOFT_DELETED = "soft_deleted"
    RESTORED = "restored"
    ALREADY_ACTIVE = "already_active"
    PURGED = "purged"


class SweepTrigger(str, Enum):
    """Who started a sweep."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"


class LifecycleResult(BaseModel):
    """Result of a soft delete, restore or permanent delete."""

    model_config = ConfigDict(use_enum_values=True)

    success: bool = Field(True, description="Whether the call succeeded")
    outcome: LifecycleOutcome = Field(..., description="What the call did")
    entity_type: str = Field(..., description="Table of the record")
    record_id: str = Field(..., description="Record identifier")
    record: Optional[Dict[str, Any]] = Field(
        None, description="Record state after the call, or the purged snapshot"
    )
    cascade: Dict[str, int] = Field(
        default_factory=dict, description="Auxiliary rows removed, by table"
    )
    audit_entry_id: Optional[str] = Field(
        None, description="Audit entry written for the transition"
    )


class DeletedRecord(BaseModel):
    """A soft-deleted record annotated with its position in the window."""

    record: Dict[str, Any] = Field(..., description="Record snapshot")
    deleted_at: datetime = Field(..., description="When it was soft deleted")
    deleted_by: str = Field(..., description="Who soft deleted it")
    deletion_age_days: int = Field(..., description="Whole days since deletion")
    restorable: bool = Field(..., description="Still inside the restore window")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class DeletedRecordPage(BaseModel):
    """One page of ``list_deleted`` results, newest deletion first."""

    entity_type: str
    records: List[DeletedRecord] = Field(default_factory=list)
    pagination: Pagination


class TableRetentionStats(BaseModel):
    """Soft-deleted row counts for one table."""

    entity_type: str
    total_deleted: int = 0
    within_retention: int = 0
    ready_for_cleanup: int = 0


class SweepReport(BaseModel):
    """Outcome of one sweep run."""

    model_config = ConfigDict(use_enum_values=True)

    trigger: SweepTrigger = Field(..., description="Scheduled or manual")
    actor_id: Optional[str] = Field(None, description="Actor of a manual sweep")
    skipped: bool = Field(
        False, description="True when another sweep was already running"
    )
    started_at: datetime = Field(..., description="Sweep start")
    completed_at: Optional[datetime] = Field(None, description="Sweep end")
    cutoff: Optional[datetime] = Field(
        None, description="Records deleted before this were purge-eligible"
    )
    counts: Dict[str, int] = Field(
        default_factory=dict, description="Rows purged, by table"
    )
    errors: Dict[str, List[str]] = Field(
        default_factory=dict, description="Failure messages, by table"
    )
    audit_entries_purged: int = Field(0, description="Expired audit entries removed")

    @property
    def total_purged(self) -> int:
        return sum(self.counts.values())

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class SweepStatus(BaseModel):
    """Read-only view of the sweeper."""

    is_running: bool
    last_sweep_time: Optional[datetime] = None
    next_scheduled_time: datetime
    scheduler_active: bool = False
    last_report: Optional[SweepReport] = None
