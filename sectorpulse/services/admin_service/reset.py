"""Data reset: remove every submission-derived row.

Answers, receipt codes, submissions and the aggregate cache are deleted in
one transaction together with the audit entry recording the reset. Survey
definitions (surveys, sections, questions, branching rules) are untouched.
"""
import logging
from typing import Dict, Optional

from sectorpulse.shared.database import ConnectionManager
from sectorpulse.services.analytics_service.cache_repository import CacheRepository
from sectorpulse.services.audit_service import AuditAction, AuditLogger, AuditRepository
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository

logger = logging.getLogger(__name__)

RESET_CONFIRMATION = "DELETE ALL SURVEY DATA"


class ResetConfirmationError(ValueError):
    """Confirmation phrase missing or wrong."""
    pass


class DataResetService:
    """Deletes raw submission data and the cache derived from it."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        submission_repository: Optional[SubmissionRepository] = None,
        cache_repository: Optional[CacheRepository] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.connection_manager = connection_manager
        self.submission_repository = submission_repository or SubmissionRepository(
            connection_manager
        )
        self.cache_repository = cache_repository or CacheRepository(connection_manager)
        self.audit_logger = audit_logger or AuditLogger(AuditRepository(connection_manager))

    def reset(self, confirmation: str, actor_id: str) -> Dict[str, int]:
        """Delete all survey responses.

        Args:
            confirmation: Must equal ``RESET_CONFIRMATION`` exactly
            actor_id: Administrator performing the reset

        Returns:
            Rows deleted per table

        Raises:
            ResetConfirmationError: If the confirmation phrase does not match
        """
        if confirmation != RESET_CONFIRMATION:
            logger.warning("DATA_RESET_REJECTED", extra={"actor_id": actor_id})
            raise ResetConfirmationError(
                f"Confirmation must be exactly '{RESET_CONFIRMATION}'"
            )

        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                deleted = self.submission_repository.delete_all(cur)
                deleted["aggregates_cache"] = self.cache_repository.delete_all(cur)
                self.audit_logger.log(
                    AuditAction.DATABASE_RESET,
                    actor_id=actor_id,
                    details={"deleted": dict(deleted)},
                    cursor=cur,
                )

        logger.warning(
            "DATA_RESET_COMPLETED",
            extra=dict(deleted, actor_id=actor_id)
        )
        return deleted
