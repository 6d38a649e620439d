"""Cache Store: the ``aggregates_cache`` table.

The cache is a materialised view over submissions and answers. Every row
can be recomputed from raw data at any time, so it has no backup or
migration discipline of its own, and only the aggregation engine and the
full rebuild write to it.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sectorpulse.shared.database import BaseRepository, ConnectionManager
from .cache_keys import KeyScheme

logger = logging.getLogger(__name__)


def canonical_json(value: Any) -> str:
    """Stable JSON text so identical results serialise byte-identically."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class AggregateCacheEntry:
    """One cached aggregation slice.

    Attributes:
        cache_key: Unique key for the dimension tuple
        key_scheme: Identity or descriptive key
        year: Survey year
        quarter: Survey quarter
        sector: Sector value
        question_id: Question aggregated
        size_band: Size band filter, None for the sector-wide slice
        dimensions: Display copy of the key fields plus question text
        result: Option value -> count (or weighted share sum)
        response_count: Distinct contributing submissions
        computed_at: When the slice was last written
    """
    cache_key: str
    key_scheme: KeyScheme
    year: int
    quarter: int
    sector: str
    question_id: str
    size_band: Optional[str]
    dimensions: Dict[str, Any]
    result: Dict[str, float]
    response_count: int
    computed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_key": self.cache_key,
            "dimensions": self.dimensions,
            "result": self.result,
            "response_count": self.response_count,
            "computed_at": self.computed_at.isoformat() + "Z",
        }


class CacheRepository(BaseRepository[AggregateCacheEntry]):
    """Reads and upserts aggregate cache rows."""

    columns = (
        "cache_key", "key_scheme", "year", "quarter", "sector", "question_id",
        "size_band", "dimensions", "result", "response_count", "computed_at",
    )

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(
            connection_manager,
            table_name="aggregates_cache",
            key_column="cache_key",
            order_column="computed_at",
        )

    def _row_to_entity(self, row: tuple) -> AggregateCacheEntry:
        dimensions = row[7]
        if isinstance(dimensions, str):
            dimensions = json.loads(dimensions)
        result = row[8]
        if isinstance(result, str):
            result = json.loads(result)

        return AggregateCacheEntry(
            cache_key=row[0],
            key_scheme=KeyScheme(row[1]),
            year=row[2],
            quarter=row[3],
            sector=row[4],
            question_id=row[5],
            size_band=row[6],
            dimensions=dimensions or {},
            result=result or {},
            response_count=row[9],
            computed_at=row[10],
        )

    def _entity_to_params(self, entity: AggregateCacheEntry) -> Dict[str, Any]:
        return {
            "cache_key": entity.cache_key,
            "key_scheme": entity.key_scheme.value,
            "year": entity.year,
            "quarter": entity.quarter,
            "sector": entity.sector,
            "question_id": entity.question_id,
            "size_band": entity.size_band,
            "dimensions": canonical_json(entity.dimensions),
            "result": canonical_json(entity.result),
            "response_count": entity.response_count,
            "computed_at": entity.computed_at,
        }

    def _upsert_statement(self, params: Dict[str, Any]) -> str:
        # Unchanged slices are left untouched, computed_at included, so a
        # repeated refresh leaves the row byte-identical.
        return (
            super()._upsert_statement(params)
            + " WHERE aggregates_cache.result <> EXCLUDED.result"
            " OR aggregates_cache.response_count <> EXCLUDED.response_count"
            " OR aggregates_cache.dimensions <> EXCLUDED.dimensions"
        )

    def read(self, cache_key: str) -> Optional[AggregateCacheEntry]:
        """Fetch one slice by key; a miss means no data yet."""
        return self.find_by_key(cache_key)

    def upsert(self, entry: AggregateCacheEntry, cursor=None) -> bool:
        """Insert or update a slice (last writer wins).

        Args:
            entry: Slice to write
            cursor: Cursor of an open transaction; when omitted the write
                commits in its own transaction

        Returns:
            True if a row was inserted or changed
        """
        params = self._entity_to_params(entry)
        query = self._upsert_statement(params)
        values = list(params.values())

        if cursor is not None:
            cursor.execute(query, values)
            changed = cursor.rowcount > 0
        else:
            with self.connection_manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, values)
                    changed = cur.rowcount > 0

        logger.debug(
            "CACHE_ENTRY_UPSERTED",
            extra={
                "cache_key": entry.cache_key,
                "response_count": entry.response_count,
                "changed": changed,
            }
        )
        return changed

    def find_entries(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
        sector_wide_only: bool = False,
        question_id: Optional[str] = None,
        scheme: KeyScheme = KeyScheme.IDENTITY,
        limit: int = 500,
        cursor=None,
    ) -> List[AggregateCacheEntry]:
        """Query cached slices by dimension.

        Args:
            year: Filter by year
            quarter: Filter by quarter
            sector: Filter by sector
            size_band: Only slices for this size band
            sector_wide_only: Only slices without a size band (ignored when
                ``size_band`` is given)
            question_id: Filter by question
            scheme: Key scheme to return
            limit: Maximum slices to return
            cursor: Optional cursor of an open transaction

        Returns:
            Slices ordered newest period first, then by key
        """
        query = f"SELECT {self.select_columns} FROM aggregates_cache WHERE key_scheme = %s"
        params: List[Any] = [scheme.value]

        if year is not None:
            query += " AND year = %s"
            params.append(year)
        if quarter is not None:
            query += " AND quarter = %s"
            params.append(quarter)
        if sector:
            query += " AND sector = %s"
            params.append(sector)
        if question_id:
            query += " AND question_id = %s"
            params.append(question_id)
        if size_band:
            query += " AND size_band = %s"
            params.append(size_band)
        elif sector_wide_only:
            query += " AND size_band IS NULL"

        query += " ORDER BY year DESC, quarter DESC, cache_key LIMIT %s"
        params.append(limit)

        if cursor is not None:
            cursor.execute(query, params)
            return [self._row_to_entity(row) for row in cursor.fetchall()]

        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()

        return [self._row_to_entity(row) for row in rows]

    def delete_all(self, cursor) -> int:
        """Delete every cached slice inside the caller's transaction."""
        cursor.execute("DELETE FROM aggregates_cache")
        return cursor.rowcount

    def delete_for_survey(self, survey_id: str, cursor) -> int:
        """Delete all slices (both schemes) of one survey's questions."""
        cursor.execute(
            "DELETE FROM aggregates_cache WHERE question_id IN ("
            "SELECT q.id FROM questions q "
            "JOIN survey_sections ss ON ss.id = q.section_id "
            "WHERE ss.survey_id = %s)",
            (survey_id,)
        )
        return cursor.rowcount
