from contextlib import contextmanager
from typing import Any, Iterator, Sequence, cast

from rolelease.execution.base import ConnectionHandle, Driver, Session
from rolelease.execution.connection import ConnectionConfig

# ==================================================
# PostgreSQL Driver
# ==================================================

UTC_TIMEZONE_OPTION = "-c TimeZone=UTC"

# Ceiling used when max_open_connections is 0 (no explicit limit).
UNLIMITED_POOL_MAX_SIZE = 16

DEFAULT_POOL_TIMEOUT_SECONDS = 30.0


def _get_psycopg() -> Any:
    """
    Lazily imports psycopg and returns the module.
    """
    try:
        import psycopg
    except ImportError:
        raise ImportError(
            "The 'psycopg' library is required for PostgresDriver. "
            "Install it with 'pip install psycopg[binary]'."
        )
    return psycopg


def _get_psycopg_sql() -> Any:
    _get_psycopg()
    from psycopg import sql

    return sql


def _get_pool_timeout_class() -> Any:
    """
    Lazily imports psycopg_pool and returns its PoolTimeout exception.
    """
    try:
        from psycopg_pool import PoolTimeout
    except ImportError:
        raise ImportError(
            "The 'psycopg-pool' library is required for PostgresDriver. "
            "Install it with 'pip install psycopg-pool'."
        )
    return PoolTimeout


def _get_connection_pool_class() -> Any:
    """
    Lazily imports psycopg_pool and returns its ConnectionPool class.
    """
    try:
        from psycopg_pool import ConnectionPool
    except ImportError:
        raise ImportError(
            "The 'psycopg-pool' library is required for PostgresDriver. "
            "Install it with 'pip install psycopg-pool'."
        )
    return ConnectionPool


def with_utc_timezone(connection_url: str) -> str:
    """
    Returns the conninfo with the session timezone forced to UTC.

    Both URL and key/value forms are accepted; existing options are kept.
    """
    _get_psycopg()
    from psycopg import conninfo

    params = conninfo.conninfo_to_dict(connection_url)
    options = str(params.get("options") or "").strip()
    params["options"] = f"{options} {UTC_TIMEZONE_OPTION}" if options else UTC_TIMEZONE_OPTION
    return cast(str, conninfo.make_conninfo("", **params))


def pool_limits(config: ConnectionConfig) -> tuple[int, int]:
    """
    Maps (max open, max idle) onto psycopg_pool's (min_size, max_size).
    """
    max_size = config.max_open_connections or max(UNLIMITED_POOL_MAX_SIZE, config.max_idle_connections)
    min_size = min(config.effective_max_idle_connections, max_size)
    return min_size, max_size


def _reset_session(connection: Any) -> None:
    # Runs when a connection goes back to the pool.
    connection.execute("RESET statement_timeout")


class PostgresSession(Session):
    """
    A Session over one pooled psycopg connection in autocommit mode.
    """

    def __init__(self, connection: Any) -> None:
        self.connection = connection
        self._in_transaction = False
        self._timeout_applied = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _apply_timeout(self, cur: Any, timeout_seconds: float | None) -> None:
        if timeout_seconds is None:
            if self._timeout_applied and not self._in_transaction:
                cur.execute("RESET statement_timeout")
                self._timeout_applied = False
            return
        # statement_timeout 0 disables the limit, so round up to at least 1ms.
        timeout_ms = max(1, int(timeout_seconds * 1000))
        cur.execute(
            "SELECT set_config('statement_timeout', %s, %s)",
            [str(timeout_ms), self._in_transaction],
        )
        if not self._in_transaction:
            self._timeout_applied = True

    def execute(
        self,
        statement: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        with self.connection.cursor() as cur:
            self._apply_timeout(cur, timeout_seconds)
            cur.execute(statement, params)

    def fetch_one(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Any] | None:
        with self.connection.cursor() as cur:
            self._apply_timeout(cur, timeout_seconds)
            cur.execute(sql, params)
            return cast(Sequence[Any] | None, cur.fetchone())

    def fetch_all(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Sequence[Any]]:
        with self.connection.cursor() as cur:
            self._apply_timeout(cur, timeout_seconds)
            cur.execute(sql, params)
            return cast(Sequence[Sequence[Any]], cur.fetchall())

    def begin(self) -> None:
        if self._in_transaction:
            raise RuntimeError("Transaction already active.")
        self.connection.autocommit = False
        self._in_transaction = True

    def commit(self) -> None:
        if not self._in_transaction:
            raise RuntimeError("No active transaction. Call begin() first.")
        try:
            self.connection.commit()
        finally:
            self._finish_transaction()

    def rollback(self) -> None:
        if not self._in_transaction:
            raise RuntimeError("No active transaction. Call begin() first.")
        try:
            self.connection.rollback()
        finally:
            self._finish_transaction()

    def _finish_transaction(self) -> None:
        self._in_transaction = False
        if not self.connection.closed:
            self.connection.autocommit = True

    def quote_identifier(self, name: str) -> str:
        sql = _get_psycopg_sql()
        return cast(str, sql.Identifier(name).as_string(self.connection))

    def quote_literal(self, value: str) -> str:
        sql = _get_psycopg_sql()
        return cast(str, sql.Literal(value).as_string(self.connection))


class PostgresConnectionHandle(ConnectionHandle):
    """
    The shared handle: a psycopg_pool.ConnectionPool sized from the config.
    """

    def __init__(self, pool: Any, *, pool_timeout_seconds: float | None = None) -> None:
        self.pool = pool
        self.pool_timeout_seconds = pool_timeout_seconds or DEFAULT_POOL_TIMEOUT_SECONDS

    def _checkout_timeout(self, timeout_seconds: float | None) -> float:
        return self.pool_timeout_seconds if timeout_seconds is None else timeout_seconds

    def _saturated(self) -> bool:
        """
        True when every connection the pool may hold is checked out.
        """
        stats = self.pool.get_stats()
        pool_max = stats.get("pool_max", 0)
        return stats.get("pool_available", 0) == 0 and pool_max > 0 and stats.get("pool_size", 0) >= pool_max

    def ping(self, timeout_seconds: float | None = None) -> None:
        # Connections in use by other operations already prove the server is reachable.
        if self._saturated():
            return
        try:
            with self.pool.connection(timeout=self._checkout_timeout(timeout_seconds)) as conn:
                conn.execute("SELECT 1")
        except _get_pool_timeout_class():
            if self._saturated():
                return
            raise

    @contextmanager
    def session(self, timeout_seconds: float | None = None) -> Iterator[Session]:
        with self.pool.connection(timeout=self._checkout_timeout(timeout_seconds)) as conn:
            session = PostgresSession(conn)
            try:
                yield session
            finally:
                if session.in_transaction:
                    session.rollback()

    def close(self) -> None:
        self.pool.close()


class PostgresDriver(Driver):
    """
    Opens pooled psycopg handles with the session timezone forced to UTC.
    """

    def __init__(self, pool_name: str = "rolelease") -> None:
        self.pool_name = pool_name

    def open(self, config: ConnectionConfig) -> PostgresConnectionHandle:
        pool_class = _get_connection_pool_class()
        min_size, max_size = pool_limits(config)
        kwargs: dict[str, Any] = {"autocommit": True}
        if config.connect_timeout_seconds is not None:
            kwargs["connect_timeout"] = max(1, int(config.connect_timeout_seconds))

        pool = pool_class(
            with_utc_timezone(config.connection_url),
            min_size=min_size,
            max_size=max_size,
            kwargs=kwargs,
            reset=_reset_session,
            name=self.pool_name,
            open=False,
        )
        handle = PostgresConnectionHandle(pool, pool_timeout_seconds=config.connect_timeout_seconds)
        try:
            pool.open(wait=min_size > 0, timeout=handle.pool_timeout_seconds)
            handle.ping()
        except BaseException:
            pool.close()
            raise
        return handle
