"""
Audit Trail Module - append-only lifecycle audit log.

Records soft deletes, restores, permanent deletes and sweep runs with
checksums for later integrity verification.
"""

from .logger import AuditLogger
from .models import SYSTEM_TARGET, AuditAction, AuditEntry, AuditQuery
from .storage import AuditLogDB, AuditStorage

__all__ = [
    # Logger
    "AuditLogger",
    # Models
    "AuditEntry",
    "AuditAction",
    "AuditQuery",
    "SYSTEM_TARGET",
    # Storage
    "AuditStorage",
    "AuditLogDB",
]
