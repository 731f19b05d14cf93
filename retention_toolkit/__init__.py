"""
Retention Toolkit - soft delete and retention-windowed archival.

Records are soft deleted with a ``deleted_at``/``deleted_by`` marker, can be
restored for 60 days, and are then permanently deleted by a scheduled sweep
together with their auxiliary rows. Every transition is written to an
append-only audit log.

Quick Start
-----------
>>> from retention_toolkit import (
...     AuditLogger, LifecycleManager, RetentionSweeper, setup_database
... )
>>>
>>> session_factory = setup_database("sqlite:///./app.db")
>>> audit = AuditLogger(session_factory)
>>> lifecycle = LifecycleManager(session_factory, audit)
>>>
>>> await lifecycle.soft_delete("post", 42, actor_id="admin-1", reason="spam")
>>> await lifecycle.restore("post", 42, actor_id="admin-2")
>>>
>>> sweeper = RetentionSweeper(lifecycle)
>>> sweeper.start()  # daily sweep on the running event loop

Documentation
-------------
See the /examples directory for a complete walkthrough and ``retention --help``
for the command line interface.
"""

__version__ = "1.0.0"

from .audit_trail import AuditAction, AuditLogger
from .config import RetentionConfig, get_config, set_config
from .database import setup_database
from .soft_delete import (
    EntityType,
    LifecycleError,
    LifecycleManager,
    RetentionSweeper,
    SoftDeleteMixin,
)

__all__ = [
    # Soft Delete
    "SoftDeleteMixin",
    "EntityType",
    "LifecycleManager",
    "RetentionSweeper",
    "LifecycleError",
    # Audit Trail
    "AuditLogger",
    "AuditAction",
    # Configuration
    "RetentionConfig",
    "get_config",
    "set_config",
    # Database
    "setup_database",
]
