"""
PostgreSQL connection pool management using psycopg3

Connection settings are resolved once into a DatabaseSettings object and
passed explicitly; nothing depends on session-level search_path state.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout
from pydantic import BaseModel, Field

from ves_dw.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseSettings(BaseModel):
    """
    Warehouse connection settings.

    Attributes:
        host / port / database / user / password: Connection parameters
        schema_name: Schema holding the dimension and fact tables
        min_size / max_size: Pool bounds
        timeout: Connection timeout in seconds
    """

    host: str = "localhost"
    port: int = 5432
    database: str = "ves_warehouse"
    user: str = "ves_etl"
    password: str = Field(..., min_length=1)
    schema_name: str = "warehouse"
    min_size: int = 1
    max_size: int = 10
    timeout: float = 30.0

    @classmethod
    def from_env(cls, **overrides) -> "DatabaseSettings":
        """
        Build settings from DB_* environment variables.

        Raises:
            ValueError: If no password is configured
        """
        password = overrides.pop("password", None) or os.getenv("DB_PASSWORD")
        if not password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass it explicitly."
            )

        values = {
            "host": os.getenv("DB_HOST", "localhost"),
            "port": int(os.getenv("DB_PORT", "5432")),
            "database": os.getenv("DB_NAME", "ves_warehouse"),
            "user": os.getenv("DB_USER", "ves_etl"),
            "schema_name": os.getenv("DB_SCHEMA", "warehouse"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(password=password, **values)

    @property
    def conninfo(self) -> str:
        # make_conninfo quotes values, so passwords with spaces or quotes survive
        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            connect_timeout=int(self.timeout),
            application_name="ves-warehouse-etl",
        )


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Provides pooled connections with retry on open and explicit
    transaction scopes for the per-key loaders.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        """
        Initialize database connection pool

        Args:
            settings: Resolved connection settings
        """
        self.settings = settings
        self._pool: ConnectionPool | None = None

    @property
    def schema_name(self) -> str:
        return self.settings.schema_name

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
                conninfo=self.settings.conninfo,
                min_size=self.settings.min_size,
                max_size=self.settings.max_size,
                timeout=self.settings.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.settings.timeout)
                self._pool = pool
                return
            except (OperationalError, PoolTimeout) as e:
                pool.close()
                logger.warning(
                    f"Database connection attempt {attempt}/{max_retries} failed: {e}",
                    extra={"host": self.settings.host, "database": self.settings.database},
                )
                if attempt < max_retries:
                    time.sleep(retry_delay)
                else:
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e

    def close(self) -> None:
        """Close the pool; safe to call twice."""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a pooled connection (dict rows).

        The pool commits on a clean exit and rolls back on an exception;
        loaders open `conn.transaction()` blocks inside for per-row scopes.

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        """Cursor on a borrowed connection."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    def execute_query(self, query, params: tuple | dict | None = None) -> list[dict]:
        """Run a query (str or psycopg.sql.Composed) and return every row as a dict."""
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command, params: tuple | dict | None = None) -> int:
        """Run one DML or DDL statement in its own transaction; returns the rowcount."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
            return rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
