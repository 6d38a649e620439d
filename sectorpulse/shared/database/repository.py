"""Base repository pattern for database operations.

Provides common read/upsert/delete operations over a single table with
an explicit column list, so row tuples map to entities positionally.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses declare ``columns`` (the order ``_row_to_entity`` expects)
    and implement entity-specific logic while inheriting:
    - Connection management
    - Upsert on the table's unique key
    - Logging patterns
    """

    columns: Sequence[str] = ()

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
        key_column: str = "id",
        order_column: str = "created_at",
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
            table_name: Name of the database table
            key_column: Unique column used for lookups and upserts
            order_column: Column used to order ``find_all`` (newest first)
        """
        self.connection_manager = connection_manager
        self.table_name = table_name
        self.key_column = key_column
        self.order_column = order_column

        logger.debug(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name, "key_column": key_column}
        )

    @property
    def select_columns(self) -> str:
        return ", ".join(self.columns)

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity.

        Args:
            row: Database row tuple, ordered as ``columns``

        Returns:
            Entity instance
        """
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to database parameters.

        Args:
            entity: Entity instance

        Returns:
            Dictionary of column names to values
        """
        pass

    def find_by_key(self, key: str) -> Optional[T]:
        """Find entity by its unique key.

        Args:
            key: Value of ``key_column``

        Returns:
            Entity if found, None otherwise
        """
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {self.select_columns} FROM {self.table_name} "
                    f"WHERE {self.key_column} = %s",
                    (key,)
                )
                row = cur.fetchone()

                if row is None:
                    return None

                return self._row_to_entity(row)

    def find_all(
        self,
        limit: int = 100,
        offset: int = 0,
    ) -> List[T]:
        """Find all entities with pagination.

        Args:
            limit: Maximum entities to return
            offset: Number of entities to skip

        Returns:
            List of entities
        """
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {self.select_columns} FROM {self.table_name} "
                    f"ORDER BY {self.order_column} DESC LIMIT %s OFFSET %s",
                    (limit, offset)
                )
                rows = cur.fetchall()

                return [self._row_to_entity(row) for row in rows]

    def _upsert_statement(self, params: Dict[str, Any]) -> str:
        columns = list(params.keys())
        placeholders = ["%s"] * len(columns)
        update_clause = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in columns
            if col not in ("id", self.key_column)
        )

        return (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"ON CONFLICT ({self.key_column}) DO UPDATE SET {update_clause}"
        )

    def save(self, entity: T, cursor=None) -> T:
        """Save entity (insert or update on the unique key).

        Args:
            entity: Entity to save
            cursor: Cursor of an open transaction; when omitted the save
                runs and commits in its own transaction

        Returns:
            Saved entity
        """
        params = self._entity_to_params(entity)
        query = self._upsert_statement(params)
        values = list(params.values())

        if cursor is not None:
            cursor.execute(query, values)
            return entity

        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(query, values)

        return entity

    def delete(self, key: str) -> bool:
        """Delete entity by its unique key.

        Args:
            key: Value of ``key_column``

        Returns:
            True if deleted, False if not found
        """
        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.table_name} WHERE {self.key_column} = %s",
                    (key,)
                )
                return cur.rowcount > 0

    def count(self) -> int:
        """Count total entities.

        Returns:
            Total count
        """
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM {self.table_name}")
                row = cur.fetchone()

                return row[0] if row else 0
