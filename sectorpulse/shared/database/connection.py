"""Database connection manager with pooling and health checks.

Manages PostgreSQL connections with:
- Connection pooling for concurrent request handling
- Explicit transactions for atomic multi-row writes
- Health checks for readiness endpoints
- Secrets Manager integration for credentials
"""
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Credentials are loaded from AWS Secrets Manager in production,
    or from environment variables in development. When ``dsn`` is set it
    takes precedence over the individual connection fields.
    """
    host: str
    port: int = 5432
    database: str = "sectorpulse"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 10
    ssl_mode: str = "prefer"
    dsn: Optional[str] = None

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables.

        Environment variables:
            DATABASE_URL: Full connection URL (overrides the fields below)
            DB_HOST: Database host
            DB_PORT: Database port (default 5432)
            DB_NAME: Database name (default sectorpulse)
            DB_USER: Database username
            DB_PASSWORD: Database password
            DB_MIN_CONN: Minimum pool connections (default 2)
            DB_MAX_CONN: Maximum pool connections (default 10)
            DB_SSL_MODE: SSL mode (default prefer)
        """
        dsn = os.getenv("DATABASE_URL") or None
        if dsn and dsn.startswith("postgres://"):
            dsn = dsn.replace("postgres://", "postgresql://", 1)

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "sectorpulse"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            min_connections=int(os.getenv("DB_MIN_CONN", "2")),
            max_connections=int(os.getenv("DB_MAX_CONN", "10")),
            ssl_mode=os.getenv("DB_SSL_MODE", "prefer"),
            dsn=dsn,
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-east-1") -> "DatabaseConfig":
        """Load config from AWS Secrets Manager.

        Args:
            secret_arn: ARN of the secret containing credentials
            region: AWS region

        Returns:
            DatabaseConfig with credentials from Secrets Manager
        """
        try:
            import boto3
            import json

            client = boto3.client("secretsmanager", region_name=region)
            response = client.get_secret_value(SecretId=secret_arn)
            secret = json.loads(response["SecretString"])

            return cls(
                host=secret.get("host", os.getenv("DB_HOST", "localhost")),
                port=int(secret.get("port", os.getenv("DB_PORT", "5432"))),
                database=secret.get("dbname", os.getenv("DB_NAME", "sectorpulse")),
                username=secret.get("username", ""),
                password=secret.get("password", ""),
            )
        except Exception as e:
            logger.error(
                "SECRETS_MANAGER_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise


class ConnectionManager:
    """Manages database connections with pooling.

    Uses psycopg2 connection pool for PostgreSQL. Connections handed out by
    ``get_connection`` are returned to the pool afterwards; the pool rolls
    back anything left uncommitted.
    """

    def __init__(self, config: DatabaseConfig):
        """Initialize connection manager.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool = None
        self._initialized = False

        logger.info(
            "CONNECTION_MANAGER_CREATED",
            extra={
                "host": config.host,
                "database": config.database,
                "min_connections": config.min_connections,
                "max_connections": config.max_connections,
            }
        )

    def initialize(self) -> None:
        """Initialize the connection pool.

        Call this during application startup.
        """
        if self._initialized:
            return

        from psycopg2 import pool

        try:
            if self.config.dsn:
                self._pool = pool.ThreadedConnectionPool(
                    minconn=self.config.min_connections,
                    maxconn=self.config.max_connections,
                    dsn=self.config.dsn,
                    connect_timeout=self.config.connect_timeout,
                )
            else:
                self._pool = pool.ThreadedConnectionPool(
                    minconn=self.config.min_connections,
                    maxconn=self.config.max_connections,
                    host=self.config.host,
                    port=self.config.port,
                    database=self.config.database,
                    user=self.config.username,
                    password=self.config.password,
                    connect_timeout=self.config.connect_timeout,
                    sslmode=self.config.ssl_mode,
                )

            self._initialized = True
            logger.info(
                "CONNECTION_POOL_INITIALIZED",
                extra={
                    "host": self.config.host,
                    "database": self.config.database,
                }
            )

        except Exception as e:
            logger.error(
                "CONNECTION_POOL_INIT_FAILED",
                extra={"error": str(e)}
            )
            raise

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool.

        Usage:
            with manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")

        Yields:
            Database connection
        """
        if not self._initialized:
            self.initialize()

        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        finally:
            if conn is not None:
                self._pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """Run a block of statements as one atomic unit.

        Commits when the block exits normally; rolls back and re-raises
        on any exception.

        Usage:
            with manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM answers")
                    cur.execute("DELETE FROM submissions")

        Yields:
            Database connection with an open transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.warning(
                    "TRANSACTION_ROLLED_BACK",
                    extra={"error": str(e)}
                )
                raise

    def integrity_errors(self) -> Tuple[type, ...]:
        """Driver exceptions raised on unique or foreign key violations."""
        from psycopg2 import IntegrityError

        return (IntegrityError,)

    def health_check(self) -> Dict[str, Any]:
        """Check database connectivity.

        Returns:
            Dictionary with health status
        """
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()

            return {
                "status": "connected",
                "healthy": True,
                "host": self.config.host,
                "database": self.config.database,
            }

        except Exception as e:
            logger.error(
                "DATABASE_HEALTH_CHECK_FAILED",
                extra={"error": str(e)}
            )
            return {
                "status": "error",
                "healthy": False,
                "error": str(e),
            }

    def close(self) -> None:
        """Close all connections in the pool.

        Call this during application shutdown.
        """
        if self._pool is not None:
            self._pool.closeall()
            logger.info("CONNECTION_POOL_CLOSED")

        self._pool = None
        self._initialized = False


# Global connection manager instance
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the global connection manager.

    Returns:
        ConnectionManager instance
    """
    global _connection_manager

    if _connection_manager is None:
        config = DatabaseConfig.from_env()
        _connection_manager = ConnectionManager(config)

    return _connection_manager


def set_connection_manager(manager: Optional[ConnectionManager]) -> None:
    """Replace the global connection manager (for workers and tests)."""
    global _connection_manager
    _connection_manager = manager
