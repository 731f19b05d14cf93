"""
Soft Delete Module - retention-windowed record lifecycle.

Provides the soft delete mixin, the entity registry and cascade table, the
lifecycle manager for admin operations and the retention sweeper that purges
records once their restore window has elapsed.
"""

# exceptions and mixins load before the registry, which imports the entities
from .exceptions import (
    AlreadyDeletedError,
    CascadeFailure,
    LifecycleError,
    NotSoftDeletableError,
    RecordNotFoundError,
    RestoreWindowExpiredError,
    UnknownEntityTypeError,
)
from .mixins import RETENTION_WINDOW, SoftDeleteMixin
from .models import (
    DeletedRecord,
    DeletedRecordPage,
    LifecycleOutcome,
    LifecycleResult,
    Pagination,
    SweepReport,
    SweepStatus,
    SweepTrigger,
    TableRetentionStats,
)
from .registry import (
    DEFAULT_REGISTRATIONS,
    EntityRef,
    EntityRegistration,
    EntityRegistry,
    EntityType,
    get_registry,
)
from .services import LifecycleManager
from .sweeper import RetentionSweeper

__all__ = [
    # Mixins
    "SoftDeleteMixin",
    "RETENTION_WINDOW",
    # Registry
    "EntityType",
    "EntityRef",
    "EntityRegistration",
    "EntityRegistry",
    "DEFAULT_REGISTRATIONS",
    "get_registry",
    # Services
    "LifecycleManager",
    "RetentionSweeper",
    # Models
    "LifecycleOutcome",
    "LifecycleResult",
    "DeletedRecord",
    "DeletedRecordPage",
    "Pagination",
    "TableRetentionStats",
    "SweepTrigger",
    "SweepReport",
    "SweepStatus",
    # Exceptions
    "LifecycleError",
    "UnknownEntityTypeError",
    "NotSoftDeletableError",
    "RecordNotFoundError",
    "AlreadyDeletedError",
    "RestoreWindowExpiredError",
    "CascadeFailure",
]
