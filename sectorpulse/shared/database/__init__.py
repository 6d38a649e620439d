"""Database connection management for SectorPulse services.

Provides connection pooling, transactions, health checks, the relational
schema and repository base classes for PostgreSQL.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
    get_connection_manager,
    set_connection_manager,
)
from .repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
)
from .schema import SCHEMA_STATEMENTS, create_schema

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "get_connection_manager",
    "set_connection_manager",
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "SCHEMA_STATEMENTS",
    "create_schema",
]
