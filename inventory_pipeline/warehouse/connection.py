"""
Shared psycopg3 connection pool for the staging and inventory repositories

A connection is borrowed for one statement or one transaction and returned
straight away; nothing holds a pool slot across a batch, so a paused or
slow upload never starves reconciliation or the review queries.
"""
import os
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from psycopg import Connection, Cursor, OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from inventory_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

Params = Sequence[Any] | dict[str, Any] | None


def conninfo_from_env(
    host: str | None = None,
    port: int | None = None,
    database: str | None = None,
    user: str | None = None,
    password: str | None = None,
    connect_timeout: float = 30.0,
) -> str:
    """
    Build a libpq connection string, filling gaps from DB_* variables.

    Raises:
        ValueError: No password given and DB_PASSWORD unset
    """
    password = password or os.getenv("DB_PASSWORD")
    if not password:
        raise ValueError("Database password must be provided (argument or DB_PASSWORD)")

    return make_conninfo(
        host=host or os.getenv("DB_HOST", "localhost"),
        port=port or int(os.getenv("DB_PORT", "5432")),
        dbname=database or os.getenv("DB_NAME", "inventory"),
        user=user or os.getenv("DB_USER", "pipeline"),
        password=password,
        connect_timeout=max(1, int(connect_timeout)),
        application_name="inventory-import",
    )


class DatabaseConnectionPool:
    """
    Pool of PostgreSQL connections returning rows as dicts.

    Args:
        host, port, database, user, password: Connection parts; DB_* env vars
            fill in whatever is omitted
        min_size: Connections kept open
        max_size: Upper bound on concurrent connections
        timeout: Seconds to wait for a connection (and to connect)
        conninfo: Complete connection string, used instead of the parts
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
        conninfo: str | None = None,
    ) -> None:
        self.conninfo = conninfo or conninfo_from_env(host, port, database, user, password, timeout)
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self._pool: ConnectionPool | None = None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, waiting until min_size connections are up.

        The database is retried max_retries times before giving up.

        Raises:
            OperationalError: The database stayed unreachable
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            name="inventory-import",
            open=False,
        )
        last_error: Exception | None = None
        for attempt in range(1, max_retries + 1):
            try:
                pool.open(wait=True, timeout=self.timeout)
            except (OperationalError, TimeoutError) as e:
                last_error = e
                logger.warning(
                    f"Database unavailable, attempt {attempt} of {max_retries}",
                    extra={"attempt": attempt, "error_message": str(e)},
                )
                if attempt < max_retries:
                    time.sleep(retry_delay)
                continue
            self._pool = pool
            logger.info("Connection pool open", extra={"min_size": self.min_size, "max_size": self.max_size})
            return

        pool.close()
        raise OperationalError(f"Database unreachable after {max_retries} attempts: {last_error}") from last_error

    def close(self) -> None:
        if self._pool is None:
            return
        self._pool.close()
        self._pool = None

    @contextmanager
    def get_connection(self) -> Iterator[Connection]:
        """
        Borrow a connection; the pool commits on clean exit and rolls back on error.

        Raises:
            RuntimeError: open() has not been called
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open; call open() first")
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self, statement_timeout_seconds: float | None = None) -> Iterator[Cursor]:
        """
        Cursor inside a single transaction.

        Args:
            statement_timeout_seconds: Per-statement limit set with SET LOCAL,
                so it ends with the transaction; exceeding it raises
                psycopg.errors.QueryCanceled
        """
        with self.get_connection() as conn, conn.transaction(), conn.cursor() as cur:
            if statement_timeout_seconds is not None:
                cur.execute(f"SET LOCAL statement_timeout = {max(1, int(statement_timeout_seconds * 1000))}")
            yield cur

    def execute_query(self, query: str, params: Params = None) -> list[dict]:
        """Run a SELECT (or a statement with RETURNING) and fetch every row."""
        with self.transaction() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: Params = None) -> int:
        """Run an INSERT/UPDATE/DELETE; returns the number of rows affected."""
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.rowcount

    def execute_batch(self, command: str, params_seq: Sequence[Params]) -> None:
        """Run one statement for each parameter set, all in one transaction."""
        with self.transaction() as cur:
            cur.executemany(command, params_seq)

    def __enter__(self) -> "DatabaseConnectionPool":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
