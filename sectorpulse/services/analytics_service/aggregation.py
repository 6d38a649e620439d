"""Aggregation Engine.

Computes per-question distributions from raw answers under the
(survey, sector, year, quarter, optional size band) filter and keeps the
aggregate cache in step with raw data.

Folding rules:
- scalar answers count once per submission: ``result[value] += n``
- multi-choice lists fan out to every member, so the bucket total can
  exceed ``response_count``
- percentage splits add ``share * n`` per option, a count-weighted sum
  rather than an average (divide by ``response_count`` for the mean)
- malformed rows are skipped and excluded from ``response_count``

Refreshes are full recomputes per question, never incremental deltas.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sectorpulse.shared.database import ConnectionManager
from sectorpulse.shared.models import (
    ChoiceListAnswer,
    MalformedAnswerError,
    PercentageSplitAnswer,
    from_storage,
)
from .cache_keys import KeyScheme, build_cache_key, build_descriptive_cache_key
from .cache_repository import AggregateCacheEntry, CacheRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationResult:
    """Distribution for one question slice."""
    result: Dict[str, float]
    response_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"result": dict(self.result), "response_count": self.response_count}


@dataclass
class RefreshReport:
    """Outcome of a cache refresh for one submission's dimensions."""
    survey_id: str
    refreshed_question_ids: List[str] = field(default_factory=list)
    failed_question_ids: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed_question_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "survey_id": self.survey_id,
            "refreshed": len(self.refreshed_question_ids),
            "failed_question_ids": list(self.failed_question_ids),
        }


def fold_answer_groups(
    groups: Iterable[Tuple[Optional[str], Optional[str], int]],
) -> Dict[str, float]:
    """Fold grouped raw representations into a distribution.

    Args:
        groups: ``(answer_value, answer_values, count)`` rows

    Returns:
        Option value -> count, or option -> weighted share sum
    """
    result: Dict[str, float] = {}

    for answer_value, answer_values, count in groups:
        try:
            answer = from_storage(answer_value, answer_values)
        except MalformedAnswerError:
            continue

        if isinstance(answer, ChoiceListAnswer):
            for member in answer.values:
                result[member] = result.get(member, 0) + count
        elif isinstance(answer, PercentageSplitAnswer):
            for option, share in answer.shares.items():
                result[option] = result.get(option, 0) + float(share) * count
        else:
            result[answer.value] = result.get(answer.value, 0) + count

    return result


def _is_well_formed(answer_value: Optional[str], answer_values: Optional[str]) -> bool:
    try:
        from_storage(answer_value, answer_values)
    except MalformedAnswerError:
        return False
    return True


class AggregationEngine:
    """Computes aggregations and refreshes the aggregate cache."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        cache_repository: Optional[CacheRepository] = None,
    ):
        """Initialize engine.

        Args:
            connection_manager: Database connection manager
            cache_repository: Cache store (created from the manager if omitted)
        """
        self.connection_manager = connection_manager
        self.cache_repository = cache_repository or CacheRepository(connection_manager)

    @staticmethod
    def _filter_clause(
        survey_id: str,
        sector: str,
        year: int,
        quarter: int,
        size_band: Optional[str],
    ) -> Tuple[str, List[Any]]:
        clause = (
            "s.survey_id = %s AND s.sector = %s AND s.year = %s AND s.quarter = %s"
        )
        params: List[Any] = [survey_id, sector, year, quarter]
        if size_band:
            clause += " AND s.size_band = %s"
            params.append(size_band)
        return clause, params

    def _compute(
        self,
        cur,
        question_id: str,
        survey_id: str,
        sector: str,
        year: int,
        quarter: int,
        size_band: Optional[str],
    ) -> AggregationResult:
        clause, params = self._filter_clause(survey_id, sector, year, quarter, size_band)
        params = [question_id] + params

        cur.execute(
            "SELECT a.answer_value, a.answer_values, COUNT(*) "
            "FROM answers a JOIN submissions s ON s.id = a.submission_id "
            f"WHERE a.question_id = %s AND {clause} "
            "GROUP BY a.answer_value, a.answer_values "
            "ORDER BY a.answer_value, a.answer_values",
            params
        )
        groups = [(row[0], row[1], int(row[2])) for row in cur.fetchall()]

        # Distinct submissions, not rows, and only those with a usable answer
        cur.execute(
            "SELECT DISTINCT s.id, a.answer_value, a.answer_values "
            "FROM answers a JOIN submissions s ON s.id = a.submission_id "
            f"WHERE a.question_id = %s AND {clause}",
            params
        )
        contributors = {
            row[0] for row in cur.fetchall() if _is_well_formed(row[1], row[2])
        }

        return AggregationResult(
            result=fold_answer_groups(groups),
            response_count=len(contributors),
        )

    def compute_aggregation(
        self,
        question_id: str,
        survey_id: str,
        sector: str,
        year: int,
        quarter: int,
        size_band: Optional[str] = None,
        cursor=None,
    ) -> AggregationResult:
        """Compute the distribution of one question for a dimension tuple.

        Args:
            question_id: Question to aggregate
            survey_id: Owning survey
            sector: Sector filter
            year: Year filter
            quarter: Quarter filter
            size_band: Optional size band filter (None = sector-wide)
            cursor: Optional cursor of an open transaction

        Returns:
            AggregationResult (empty result and zero count when no data)
        """
        if cursor is not None:
            return self._compute(cursor, question_id, survey_id, sector, year, quarter, size_band)

        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                return self._compute(cur, question_id, survey_id, sector, year, quarter, size_band)

    def questions_for_survey(self, survey_id: str, cursor=None) -> List[Tuple[str, str]]:
        """``(question_id, question_text)`` pairs of a survey in display order."""
        query = (
            "SELECT q.id, q.question_text FROM questions q "
            "JOIN survey_sections ss ON ss.id = q.section_id "
            "WHERE ss.survey_id = %s ORDER BY ss.sort_order, q.sort_order"
        )
        if cursor is not None:
            cursor.execute(query, (survey_id,))
            return [(row[0], row[1]) for row in cursor.fetchall()]

        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (survey_id,))
                return [(row[0], row[1]) for row in cur.fetchall()]

    @staticmethod
    def build_entry(
        aggregation: AggregationResult,
        year: int,
        quarter: int,
        sector: str,
        question_id: str,
        question_text: str,
        size_band: Optional[str] = None,
        scheme: KeyScheme = KeyScheme.IDENTITY,
        computed_at: Optional[datetime] = None,
    ) -> AggregateCacheEntry:
        """Wrap an aggregation in a cache entry under the given key scheme."""
        if scheme is KeyScheme.DESCRIPTIVE:
            cache_key = build_descriptive_cache_key(year, quarter, sector, question_text, size_band)
        else:
            cache_key = build_cache_key(year, quarter, sector, question_id, size_band)

        dimensions: Dict[str, Any] = {
            "year": year,
            "quarter": quarter,
            "sector": sector,
            "question_id": question_id,
            "question_text": question_text,
        }
        if size_band:
            dimensions["size_band"] = size_band

        return AggregateCacheEntry(
            cache_key=cache_key,
            key_scheme=scheme,
            year=year,
            quarter=quarter,
            sector=sector,
            question_id=question_id,
            size_band=size_band or None,
            dimensions=dimensions,
            result=aggregation.result,
            response_count=aggregation.response_count,
            computed_at=computed_at or datetime.utcnow(),
        )

    def refresh_cache_for_submission(
        self,
        survey_id: str,
        sector: str,
        year: int,
        quarter: int,
        size_band: str,
    ) -> RefreshReport:
        """Recompute every question of a survey after a submission.

        For each question the sector-wide slice and the submitter's size
        band slice are recomputed and upserted in one transaction. A failed
        question is logged and skipped; its cache rows keep their previous
        values until the next refresh or a full rebuild.

        Returns:
            RefreshReport listing refreshed and failed question ids
        """
        report = RefreshReport(survey_id=survey_id)
        questions = self.questions_for_survey(survey_id)

        for question_id, question_text in questions:
            try:
                with self.connection_manager.transaction() as conn:
                    with conn.cursor() as cur:
                        for band in (None, size_band):
                            aggregation = self._compute(
                                cur, question_id, survey_id, sector, year, quarter, band
                            )
                            entry = self.build_entry(
                                aggregation, year, quarter, sector,
                                question_id, question_text, band,
                            )
                            self.cache_repository.upsert(entry, cursor=cur)
                report.refreshed_question_ids.append(question_id)

            except Exception as e:
                report.failed_question_ids.append(question_id)
                logger.error(
                    "CACHE_REFRESH_QUESTION_FAILED",
                    extra={
                        "survey_id": survey_id,
                        "question_id": question_id,
                        "sector": sector,
                        "year": year,
                        "quarter": quarter,
                        "size_band": size_band,
                        "error": str(e),
                    }
                )

        log = logger.info if report.succeeded else logger.warning
        log(
            "CACHE_REFRESH_COMPLETED",
            extra={
                "survey_id": survey_id,
                "sector": sector,
                "year": year,
                "quarter": quarter,
                "refreshed": len(report.refreshed_question_ids),
                "failed": len(report.failed_question_ids),
            }
        )
        return report
