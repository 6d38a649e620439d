"""Audit Service: hash-chained log of administrative actions.

Data resets and cache rebuilds write their audit entry inside the same
transaction as the action itself, so the log never records an action that
rolled back.
"""

from .audit_logger import (
    AuditAction,
    AuditEntry,
    AuditLogger,
    GENESIS_HASH,
    verify_chain,
)
from .audit_repository import AuditRepository

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLogger",
    "GENESIS_HASH",
    "verify_chain",
    "AuditRepository",
]
