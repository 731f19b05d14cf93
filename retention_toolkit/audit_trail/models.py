"""
Data models for the lifecycle audit log.

Entries are created once per transition and never modified afterwards.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ..time_utils import utcnow


class AuditAction(str, Enum):
    """Lifecycle transitions recorded in the audit log."""

    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    PERMANENT_DELETE = "permanent_delete"
    SWEEP_START = "sweep_start"
    SWEEP_COMPLETE = "sweep_complete"
    SWEEP_ERROR = "sweep_error"


SYSTEM_TARGET = "system"


class AuditEntry(BaseModel):
    """
    Immutable audit log entry.

    ``actor_id`` is None for system-initiated transitions such as scheduled
    sweeps. ``target_id`` is None for table-level and sweep-level entries.
    """

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    id: str = Field(..., description="Unique identifier for the audit entry")
    created_at: datetime = Field(
        default_factory=utcnow, description="UTC timestamp of the transition"
    )
    actor_id: Optional[str] = Field(
        None, description="Actor performing the action; None for the system"
    )
    action: AuditAction = Field(..., description="Lifecycle transition")
    target_table: str = Field(..., description="Table affected")
    target_id: Optional[str] = Field(None, description="Record affected")
    reason: Optional[str] = Field(None, description="Free-text reason")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Snapshot, cascade counts or sweep statistics"
    )
    application: str = Field("Retention Toolkit", description="Application name")
    checksum: Optional[str] = Field(
        None, description="Checksum of the entry for integrity verification"
    )

    @property
    def is_system(self) -> bool:
        return self.actor_id is None

    def calculate_checksum(self, algorithm: str = "sha256") -> str:
        """
        Calculate checksum for the audit entry.

        Args:
            algorithm: Hash algorithm to use

        Returns:
            Hex digest of the checksum
        """
        data = {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "actor_id": self.actor_id,
            "action": self.action,
            "target_table": self.target_table,
            "target_id": self.target_id,
            "reason": self.reason,
            "metadata": self.metadata,
        }

        json_str = json.dumps(data, sort_keys=True, default=str)

        if algorithm == "sha256":
            return hashlib.sha256(json_str.encode()).hexdigest()
        elif algorithm == "sha512":
            return hashlib.sha512(json_str.encode()).hexdigest()
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

    def verify_checksum(self, algorithm: Optional[str] = None) -> bool:
        """
        Verify the stored checksum against the entry's content.

        Args:
            algorithm: Hash algorithm used; inferred from the digest length
                when omitted

        Returns:
            True if checksum matches
        """
        if not self.checksum:
            return False
        if algorithm is None:
            algorithm = "sha512" if len(self.checksum) == 128 else "sha256"
        return self.calculate_checksum(algorithm) == self.checksum

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        parts = [
            f"[{self.created_at.isoformat()}]",
            f"ACTOR={self.actor_id or SYSTEM_TARGET}",
            f"ACTION={self.action}",
        ]

        if self.target_id is not None:
            parts.append(f"TARGET={self.target_table}:{self.target_id}")
        else:
            parts.append(f"TARGET={self.target_table}")

        if self.reason:
            parts.append(f"REASON='{self.reason}'")

        return " ".join(parts)


class AuditQuery(BaseModel):
    """Query parameters for searching the audit log."""

    start_date: Optional[datetime] = Field(None, description="Start of time range")
    end_date: Optional[datetime] = Field(None, description="End of time range")

    actor_ids: Optional[List[str]] = Field(None, description="Filter by actors")
    actions: Optional[List[AuditAction]] = Field(
        None, description="Filter by action types"
    )
    target_tables: Optional[List[str]] = Field(
        None, description="Filter by target tables"
    )
    target_ids: Optional[List[str]] = Field(None, description="Filter by record ids")
    system_only: bool = Field(False, description="Only system-initiated entries")

    limit: int = Field(50, description="Maximum results to return", gt=0, le=1000)
    offset: int = Field(0, description="Result offset for pagination", ge=0)
    sort_desc: bool = Field(True, description="Newest first")

    @field_validator("end_date")
    @classmethod
    def validate_date_range(
        cls, v: Optional[datetime], info: ValidationInfo
    ) -> Optional[datetime]:
        """Ensure end date is after start date."""
        if v and info.data.get("start_date"):
            if v < info.data["start_date"]:
                raise ValueError("End date must be after start date")
        return v
