"""Audit repository: append-only storage for the admin audit log.

Rows are only ever inserted; there is no update or delete path.
"""
import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sectorpulse.shared.database import ConnectionManager, RepositoryError
from .audit_logger import GENESIS_HASH, AuditAction, AuditEntry, verify_chain

logger = logging.getLogger(__name__)

_COLUMNS = (
    "entry_id, performed_at, action, actor_id, details, previous_hash, entry_hash"
)


class AuditRepository:
    """PostgreSQL-backed repository for audit entries."""

    def __init__(self, connection_manager: ConnectionManager):
        """Initialize audit repository.

        Args:
            connection_manager: Database connection manager
        """
        self.connection_manager = connection_manager

    def _execute(self, query: str, params, cursor=None, fetch: bool = True) -> List[tuple]:
        if cursor is not None:
            cursor.execute(query, params)
            return cursor.fetchall() if fetch else []

        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall() if fetch else []

    def append(self, entry: AuditEntry, cursor=None) -> bool:
        """Append audit entry to the log.

        Args:
            entry: AuditEntry to store
            cursor: Cursor of an open transaction; when omitted the insert
                commits in its own transaction

        Returns:
            True if stored successfully

        Raises:
            RepositoryError: If storage fails
        """
        query = (
            f"INSERT INTO admin_audit_log ({_COLUMNS}) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s)"
        )
        params = (
            entry.entry_id,
            entry.performed_at,
            entry.action.value,
            entry.actor_id,
            json.dumps(entry.details, sort_keys=True),
            entry.previous_hash,
            entry.entry_hash,
        )

        try:
            if cursor is not None:
                cursor.execute(query, params)
            else:
                with self.connection_manager.transaction() as conn:
                    with conn.cursor() as cur:
                        cur.execute(query, params)
        except Exception as e:
            logger.error(
                "AUDIT_APPEND_FAILED",
                extra={"entry_id": entry.entry_id, "error": str(e)}
            )
            raise RepositoryError(f"Failed to append audit entry: {e}") from e

        logger.debug(
            "AUDIT_ENTRY_STORED",
            extra={"entry_id": entry.entry_id, "action": entry.action.value}
        )
        return True

    def latest_hash(self, cursor=None) -> str:
        """Hash of the newest entry, or the genesis marker for an empty log."""
        rows = self._execute(
            "SELECT entry_hash FROM admin_audit_log "
            "ORDER BY performed_at DESC LIMIT 1",
            (),
            cursor=cursor,
        )
        return rows[0][0] if rows else GENESIS_HASH

    def query(
        self,
        action: Optional[AuditAction] = None,
        actor_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """Query audit entries, newest first.

        Args:
            action: Filter by action
            actor_id: Filter by actor
            start_date: Filter by start date
            end_date: Filter by end date
            limit: Maximum entries to return

        Returns:
            List of matching AuditEntry objects
        """
        query = f"SELECT {_COLUMNS} FROM admin_audit_log WHERE 1=1"
        params: List[Any] = []

        if action:
            query += " AND action = %s"
            params.append(action.value)
        if actor_id:
            query += " AND actor_id = %s"
            params.append(actor_id)
        if start_date:
            query += " AND performed_at >= %s"
            params.append(start_date)
        if end_date:
            query += " AND performed_at <= %s"
            params.append(end_date)

        query += " ORDER BY performed_at DESC LIMIT %s"
        params.append(limit)

        return [self._row_to_entry(row) for row in self._execute(query, params)]

    def _row_to_entry(self, row: tuple) -> AuditEntry:
        """Convert database row to AuditEntry."""
        details = row[4]
        if isinstance(details, str):
            details = json.loads(details)

        return AuditEntry(
            entry_id=row[0],
            performed_at=row[1],
            action=AuditAction(row[2]),
            actor_id=row[3],
            details=details or {},
            previous_hash=row[5],
            entry_hash=row[6],
        )

    def verify_chain(self, limit: int = 10000) -> bool:
        """Verify the stored chain from its first entry."""
        entries = self.query(limit=limit)
        return verify_chain(sorted(entries, key=lambda e: e.performed_at))
