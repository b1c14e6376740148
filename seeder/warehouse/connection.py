"""
PostgreSQL connection pool management using psycopg3

This module provides a connection pool for the WMS database with automatic
connection lifecycle management.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Accepts either a full connection URL (DATABASE_URL) or discrete
    connection parameters.
    """

    def __init__(
        self,
        conninfo: str | None = None,
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
            conninfo: Connection URL or libpq string (defaults to env var DATABASE_URL)
            host: Database host, used when no conninfo is available
            port: Database port
            database: Database name
            user: Database user
            password: Database password
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection timeout in seconds
        """
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout

        conninfo = conninfo or (None if host else os.getenv("DATABASE_URL"))
        if conninfo:
            self.conninfo = conninfo
        else:
            password = password or os.getenv("DB_PASSWORD")
            # Security: Require password to be explicitly set
            if not password:
                raise ValueError(
                    "Database password must be provided. "
                    "Set DATABASE_URL or DB_PASSWORD, or pass it to the constructor."
                )
            self.conninfo = (
                f"host={host or os.getenv('DB_HOST', 'localhost')} "
                f"port={port or int(os.getenv('DB_PORT', '5432'))} "
                f"dbname={database or os.getenv('DB_NAME', 'wms')} "
                f"user={user or os.getenv('DB_USER', 'seeder')} "
                f"password={password} "
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

        self._pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},  # Return rows as dictionaries
            open=False,
        )

        for attempt in range(1, max_retries + 1):
            try:
                self._pool.open(wait=True, timeout=self.timeout)
                return
            except (OperationalError, TimeoutError) as e:
                if attempt < max_retries:
                    time.sleep(retry_delay)
                else:
                    self._pool = None
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

    @contextmanager
    def get_cursor(self):
        """
        Get a cursor from a pooled connection

        Yields:
            psycopg.Cursor: Database cursor
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    def execute_query(self, query: str, params: tuple | list | None = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Args:
            query: SQL SELECT query
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
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
