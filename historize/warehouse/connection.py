"""
PostgreSQL connection pool management using psycopg3

This module provides the connection pool the PostgreSQL table store runs
its transactions on.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from historize.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Connections hand out rows as dictionaries. Opening the pool is retried
    with a fixed delay since the warehouse may still be starting.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 4,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size (one connection per concurrently running entity)
            timeout: Connection timeout in seconds
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "datawarehouse")
        self.user = user or os.getenv("DB_USER", "pipeline")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"connect_timeout={int(self.timeout)}"
        )

        self._pool: ConnectionPool | None = None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            OperationalError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        for attempt in range(1, max_retries + 1):
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
                self._pool = pool
                logger.info(
                    "Database pool opened",
                    extra={"host": self.host, "database": self.database, "attempt": attempt},
                )
                return
            except (OperationalError, TimeoutError) as e:
                pool.close()
                if attempt < max_retries:
                    logger.warning(
                        f"Database connection attempt {attempt} failed: {e}",
                        extra={"host": self.host, "attempt": attempt},
                    )
                    time.sleep(retry_delay)
                else:
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool

        Yields:
            psycopg.Connection: Database connection

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    def execute_query(self, query, params: tuple | dict | None = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Args:
            query: SQL query (string or psycopg.sql.Composable)
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
        return False
