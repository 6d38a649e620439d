"""Audit logger: hash-chained trail of administrative actions.

Each entry stores the hash of the entry before it, so deleting or editing
any row breaks the chain. Data resets never touch this log.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


class AuditAction(Enum):
    """Administrative actions that are audited."""
    DATABASE_RESET = "database_reset"
    CACHE_REBUILT = "cache_rebuilt"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: str
    performed_at: datetime
    action: AuditAction
    actor_id: str
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""  # Chain to previous entry for verification
    entry_hash: str = ""     # Hash of this entry

    def compute_hash(self) -> str:
        """Compute SHA-256 hash of entry for verification.

        Returns:
            Hex-encoded hash string
        """
        content = {
            "entry_id": self.entry_id,
            "performed_at": self.performed_at.isoformat(),
            "action": self.action.value,
            "actor_id": self.actor_id,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True)
        return hashlib.sha256(content_str.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "performed_at": self.performed_at.isoformat() + "Z",
            "action": self.action.value,
            "actor_id": self.actor_id,
            "details": self.details,
            "entry_hash": self.entry_hash,
        }


def verify_chain(entries: Iterable[AuditEntry]) -> bool:
    """Verify integrity of an audit chain, oldest entry first.

    Returns:
        True if chain is valid, False if tampered
    """
    expected_prev = GENESIS_HASH
    count = 0

    for entry in entries:
        if entry.previous_hash != expected_prev:
            logger.critical(
                "AUDIT_CHAIN_BROKEN",
                extra={
                    "entry_id": entry.entry_id,
                    "expected": expected_prev[:16],
                    "actual": entry.previous_hash[:16],
                }
            )
            return False

        computed = entry.compute_hash()
        if computed != entry.entry_hash:
            logger.critical(
                "AUDIT_ENTRY_TAMPERED",
                extra={
                    "entry_id": entry.entry_id,
                    "computed": computed[:16],
                    "stored": entry.entry_hash[:16],
                }
            )
            return False

        expected_prev = entry.entry_hash
        count += 1

    logger.info("AUDIT_CHAIN_VERIFIED", extra={"entry_count": count})
    return True


class AuditLogger:
    """Appends chained entries through an audit repository.

    Pass the cursor of an open transaction to make the audit entry commit
    or roll back together with the action it records.
    """

    def __init__(self, repository):
        """Initialize audit logger.

        Args:
            repository: AuditRepository used for storage
        """
        self.repository = repository

    def log(
        self,
        action: AuditAction,
        actor_id: str,
        details: Optional[Dict[str, Any]] = None,
        cursor=None,
    ) -> AuditEntry:
        """Log an audit entry.

        Args:
            action: Action being audited
            actor_id: Administrator (or "system") performing it
            details: Additional context
            cursor: Cursor of an open transaction

        Returns:
            Created AuditEntry

        Logs:
            - AUDIT_ENTRY_CREATED: After entry is stored
        """
        entry = AuditEntry(
            entry_id=f"audit_{uuid.uuid4().hex[:16]}",
            performed_at=datetime.utcnow(),
            action=action,
            actor_id=actor_id,
            details=details or {},
            previous_hash=self.repository.latest_hash(cursor=cursor),
        )
        entry = replace(entry, entry_hash=entry.compute_hash())

        self.repository.append(entry, cursor=cursor)

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "actor_id": actor_id,
                "entry_hash": entry.entry_hash[:16],  # Truncated for logs
            }
        )
        return entry
