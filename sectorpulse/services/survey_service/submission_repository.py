"""Submission repository.

A submission, its answers and its receipt code are written in one
transaction: a receipt without its submission would be a dangling grant,
and a submission with partial answers would corrupt aggregation counts.
Submissions are never updated and are deleted only by a full data reset.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sectorpulse.shared.database import ConnectionManager, DuplicateError, NotFoundError
from sectorpulse.shared.models import Submission

logger = logging.getLogger(__name__)

# Child tables first so foreign keys never dangle mid-delete
RESET_TABLE_ORDER = ("answers", "receipt_codes", "submissions")


class SurveyNotActiveError(NotFoundError):
    """Survey does not exist or is retired."""
    pass


class SubmissionRepository:
    """Repository for raw submissions, answers and receipt codes."""

    def __init__(self, connection_manager: ConnectionManager):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
        """
        self.connection_manager = connection_manager

    def create(self, submission: Submission, receipt_hash: str) -> Submission:
        """Atomically store a submission with its answers and receipt hash.

        The survey's active flag is re-checked inside the transaction.

        Args:
            submission: Submission with answers
            receipt_hash: SHA-256 hex of the plaintext receipt code

        Returns:
            The stored submission

        Raises:
            SurveyNotActiveError: If the survey is missing or retired
            DuplicateError: If the submission id or receipt hash is taken
        """
        try:
            self._insert(submission, receipt_hash)
        except self.connection_manager.integrity_errors() as e:
            logger.warning(
                "SUBMISSION_DUPLICATE",
                extra={
                    "submission_id": submission.id,
                    "receipt_hash": receipt_hash[:16],
                }
            )
            raise DuplicateError(
                f"Submission {submission.id} or its receipt code already exists"
            ) from e

        logger.info(
            "SUBMISSION_STORED",
            extra={
                "submission_id": submission.id,
                "survey_id": submission.survey_id,
                "sector": submission.sector,
                "answer_count": len(submission.answers),
                "receipt_hash": receipt_hash[:16],
            }
        )
        return submission

    def _insert(self, submission: Submission, receipt_hash: str) -> None:
        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM surveys WHERE id = %s AND is_active = %s",
                    (submission.survey_id, True)
                )
                if cur.fetchone() is None:
                    raise SurveyNotActiveError(
                        f"Survey {submission.survey_id} not found or not active"
                    )

                cur.execute(
                    "INSERT INTO submissions "
                    "(id, survey_id, sector, year, quarter, size_band, submitted_at) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                    (
                        submission.id,
                        submission.survey_id,
                        submission.sector,
                        submission.year,
                        submission.quarter,
                        submission.size_band,
                        submission.submitted_at,
                    )
                )

                for answer in submission.answers:
                    params = answer.to_params()
                    cur.execute(
                        "INSERT INTO answers "
                        "(id, submission_id, question_id, answer_value, answer_values, created_at) "
                        "VALUES (%s, %s, %s, %s, %s, %s)",
                        (
                            params["id"],
                            params["submission_id"],
                            params["question_id"],
                            params["answer_value"],
                            params["answer_values"],
                            params["created_at"],
                        )
                    )

                cur.execute(
                    "INSERT INTO receipt_codes (id, code_hash, submission_id, created_at) "
                    "VALUES (%s, %s, %s, %s)",
                    (f"rc_{submission.id}", receipt_hash, submission.id, submission.submitted_at)
                )

    def find_by_receipt_hash(self, receipt_hash: str) -> Optional[Submission]:
        """Dimension tuple of the submission a receipt belongs to.

        Answers are not loaded: a receipt never reveals individual answers.
        """
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT s.id, s.survey_id, s.sector, s.year, s.quarter, "
                    "s.size_band, s.submitted_at "
                    "FROM receipt_codes rc JOIN submissions s ON s.id = rc.submission_id "
                    "WHERE rc.code_hash = %s",
                    (receipt_hash,)
                )
                row = cur.fetchone()

        if row is None:
            return None

        return Submission(
            id=row[0],
            survey_id=row[1],
            sector=row[2],
            year=row[3],
            quarter=row[4],
            size_band=row[5],
            submitted_at=row[6],
        )

    @staticmethod
    def _filters(
        year: Optional[int],
        quarter: Optional[int],
        sector: Optional[str],
        size_band: Optional[str],
    ) -> Tuple[str, List[Any]]:
        clause = " WHERE 1=1"
        params: List[Any] = []
        if year is not None:
            clause += " AND year = %s"
            params.append(year)
        if quarter is not None:
            clause += " AND quarter = %s"
            params.append(quarter)
        if sector:
            clause += " AND sector = %s"
            params.append(sector)
        if size_band:
            clause += " AND size_band = %s"
            params.append(size_band)
        return clause, params

    def _fetch(self, query: str, params: List[Any]) -> List[tuple]:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def count(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> int:
        """Live total of submissions matching the filters.

        Raw totals are not identifying, so this is not suppressed.
        """
        clause, params = self._filters(year, quarter, sector, size_band)
        rows = self._fetch("SELECT COUNT(*) FROM submissions" + clause, params)
        return int(rows[0][0]) if rows else 0

    def counts_by_sector(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> Dict[str, int]:
        clause, params = self._filters(year, quarter, sector, size_band)
        rows = self._fetch(
            "SELECT sector, COUNT(*) FROM submissions" + clause
            + " GROUP BY sector ORDER BY sector",
            params
        )
        return {row[0]: int(row[1]) for row in rows}

    def quarterly_trend(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Submission totals per (year, quarter), oldest first."""
        clause, params = self._filters(year, quarter, sector, size_band)
        rows = self._fetch(
            "SELECT year, quarter, COUNT(*) FROM submissions" + clause
            + " GROUP BY year, quarter ORDER BY year, quarter",
            params
        )
        return [
            {"year": row[0], "quarter": row[1], "count": int(row[2])}
            for row in rows
        ]

    def size_band_distribution(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> Dict[str, int]:
        clause, params = self._filters(year, quarter, sector, size_band)
        rows = self._fetch(
            "SELECT size_band, COUNT(*) FROM submissions" + clause
            + " GROUP BY size_band ORDER BY size_band",
            params
        )
        return {row[0]: int(row[1]) for row in rows}

    def delete_all(self, cursor) -> Dict[str, int]:
        """Delete all raw submission data inside the caller's transaction.

        Returns:
            Rows deleted per table, in deletion order
        """
        counts: Dict[str, int] = {}
        for table in RESET_TABLE_ORDER:
            cursor.execute(f"DELETE FROM {table}")
            counts[table] = cursor.rowcount
        return counts
