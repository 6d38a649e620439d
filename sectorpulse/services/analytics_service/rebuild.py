#!/usr/bin/env python3
"""Full rebuild of the aggregate cache from raw submissions.

Recovery path for stale or missing cache rows: wipes the cache (or one
survey's rows) and recomputes every slice in a single transaction. Retired
surveys are included so historical quarters stay viewable.

Usage:
    python -m sectorpulse.services.analytics_service.rebuild
    python -m sectorpulse.services.analytics_service.rebuild --survey-id <id>
    python -m sectorpulse.services.analytics_service.rebuild --no-descriptive
"""
import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sectorpulse.shared.database import (
    ConnectionManager,
    NotFoundError,
    get_connection_manager,
)
from sectorpulse.services.audit_service import (
    AuditAction,
    AuditLogger,
    AuditRepository,
)
from .aggregation import AggregationEngine
from .cache_keys import KeyScheme

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    """Summary of a cache rebuild."""
    surveys: int = 0
    questions: int = 0
    entries_written: int = 0
    entries_deleted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "surveys": self.surveys,
            "questions": self.questions,
            "entries_written": self.entries_written,
            "entries_deleted": self.entries_deleted,
        }


class CacheRebuilder:
    """Recomputes the whole aggregate cache from raw data."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        engine: Optional[AggregationEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.connection_manager = connection_manager
        self.engine = engine or AggregationEngine(connection_manager)
        self.audit_logger = audit_logger or AuditLogger(AuditRepository(connection_manager))

    @staticmethod
    def _load_surveys(cur, survey_id: Optional[str]) -> List[tuple]:
        query = "SELECT id, sector, year, quarter, title FROM surveys"
        params: List[Any] = []
        if survey_id:
            query += " WHERE id = %s"
            params.append(survey_id)
        cur.execute(query + " ORDER BY year, quarter, sector", params)
        return cur.fetchall()

    @staticmethod
    def _size_bands(cur, survey_id: str) -> List[str]:
        cur.execute(
            "SELECT DISTINCT size_band FROM submissions "
            "WHERE survey_id = %s ORDER BY size_band",
            (survey_id,)
        )
        return [row[0] for row in cur.fetchall() if row[0]]

    def rebuild_all(
        self,
        survey_id: Optional[str] = None,
        include_descriptive: bool = True,
        actor_id: str = "system",
    ) -> RebuildReport:
        """Rebuild cache rows for every survey, or for one survey.

        Only slices with at least one response are written. Identity keys
        match the incremental refresh byte for byte.

        Args:
            survey_id: Limit the rebuild to one survey
            include_descriptive: Also write descriptive ``desc:`` keys
            actor_id: Who triggered the rebuild (for the audit log)

        Returns:
            RebuildReport with counts

        Raises:
            NotFoundError: If ``survey_id`` does not exist
        """
        report = RebuildReport()
        schemes = [KeyScheme.IDENTITY]
        if include_descriptive:
            schemes.append(KeyScheme.DESCRIPTIVE)

        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                surveys = self._load_surveys(cur, survey_id)

                if survey_id:
                    if not surveys:
                        raise NotFoundError(f"Survey {survey_id} not found")
                    report.entries_deleted = self.engine.cache_repository.delete_for_survey(
                        survey_id, cur
                    )
                else:
                    report.entries_deleted = self.engine.cache_repository.delete_all(cur)

                computed_at = datetime.utcnow()

                for sid, sector, year, quarter, title in surveys:
                    report.surveys += 1
                    questions = self.engine.questions_for_survey(sid, cursor=cur)
                    bands = [None] + self._size_bands(cur, sid)

                    for question_id, question_text in questions:
                        report.questions += 1
                        for band in bands:
                            aggregation = self.engine.compute_aggregation(
                                question_id, sid, sector, year, quarter, band, cursor=cur
                            )
                            if aggregation.response_count <= 0:
                                continue
                            for scheme in schemes:
                                entry = self.engine.build_entry(
                                    aggregation, year, quarter, sector,
                                    question_id, question_text, band,
                                    scheme=scheme, computed_at=computed_at,
                                )
                                self.engine.cache_repository.upsert(entry, cursor=cur)
                                report.entries_written += 1

                    logger.info(
                        "CACHE_REBUILD_SURVEY_DONE",
                        extra={
                            "survey_id": sid,
                            "title": title,
                            "questions": len(questions),
                        }
                    )

                self.audit_logger.log(
                    AuditAction.CACHE_REBUILT,
                    actor_id=actor_id,
                    details=dict(
                        report.to_dict(),
                        survey_id=survey_id,
                        include_descriptive=include_descriptive,
                    ),
                    cursor=cur,
                )

        logger.info("CACHE_REBUILD_COMPLETED", extra=report.to_dict())
        return report


def setup_parser() -> argparse.ArgumentParser:
    """Set up argument parser."""
    parser = argparse.ArgumentParser(
        description="Rebuild the SectorPulse aggregate cache from raw submissions",
    )
    parser.add_argument(
        "--survey-id",
        help="Only rebuild the cache rows of this survey"
    )
    parser.add_argument(
        "--no-descriptive", action="store_true",
        help="Skip descriptive (question-text) cache keys"
    )
    parser.add_argument(
        "--actor-id", default="system",
        help="Actor recorded in the audit log"
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = setup_parser().parse_args(argv)

    manager = get_connection_manager()
    try:
        report = CacheRebuilder(manager).rebuild_all(
            survey_id=args.survey_id,
            include_descriptive=not args.no_descriptive,
            actor_id=args.actor_id,
        )
    except NotFoundError as e:
        logger.error("CACHE_REBUILD_SURVEY_NOT_FOUND", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return 1
    finally:
        manager.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
