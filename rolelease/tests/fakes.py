from contextlib import contextmanager
import re
import threading
from typing import Any, Callable, Iterator, Sequence

from rolelease.execution.base import ConnectionHandle, Driver, Session
from rolelease.execution.connection import ConnectionConfig
from rolelease.revocation.cascade import CURRENT_DATABASE_SQL, GRANTED_SCHEMAS_SQL, ROLE_EXISTS_SQL

_CREATE_ROLE = re.compile(r'^CREATE\s+(?:ROLE|USER)\s+"?([^"\s;]+)"?', re.IGNORECASE)
_DROP_ROLE = re.compile(r'^DROP\s+ROLE\s+(?:IF\s+EXISTS\s+)?"?([^"\s;]+)"?', re.IGNORECASE)


class FakeDriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class FakeDatabase:
    """
    In-memory stand-in for a PostgreSQL server.

    `applied` holds every statement whose effect is visible (autocommitted or
    committed); statements rolled back never reach it.
    """

    def __init__(self) -> None:
        self.roles: set[str] = set()
        self.granted_schema_rows: dict[str, list[Sequence[Any]]] = {}
        self.database_name: str | None = "app"
        self.applied: list[str] = []
        self.attempted: list[str] = []
        self.queries: list[tuple[str, list[Any] | None]] = []
        self.timeouts: list[float | None] = []
        self.statement_failures: list[tuple[str, Exception]] = []
        self.query_failures: dict[str, Exception] = {}
        self.commit_failure: Exception | None = None
        self.lock = threading.Lock()

    def add_role(self, name: str, schemas: Sequence[str] = ()) -> None:
        self.roles.add(name)
        self.granted_schema_rows[name] = [(schema,) for schema in schemas]

    def fail_statements_containing(self, fragment: str, exc: Exception) -> None:
        self.statement_failures.append((fragment, exc))

    def failure_for(self, statement: str) -> Exception | None:
        for fragment, exc in self.statement_failures:
            if fragment in statement:
                return exc
        return None

    def apply(self, statement: str) -> None:
        with self.lock:
            self.applied.append(statement)
            created = _CREATE_ROLE.match(statement)
            if created:
                self.roles.add(created.group(1))
            dropped = _DROP_ROLE.match(statement)
            if dropped:
                self.roles.discard(dropped.group(1))


class FakeSession(Session):
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database
        self.pending: list[str] | None = None

    @property
    def in_transaction(self) -> bool:
        return self.pending is not None

    def execute(
        self,
        statement: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self.database.attempted.append(statement)
        self.database.timeouts.append(timeout_seconds)
        failure = self.database.failure_for(statement)
        if failure is not None:
            raise failure
        if self.pending is not None:
            self.pending.append(statement)
        else:
            self.database.apply(statement)

    def _query(self, sql: str, params: Sequence[Any] | None) -> list[Sequence[Any]]:
        self.database.queries.append((sql, list(params) if params is not None else None))
        failure = self.database.query_failures.get(sql)
        if failure is not None:
            raise failure
        if sql == ROLE_EXISTS_SQL:
            assert params is not None
            return [(params[0] in self.database.roles,)]
        if sql == GRANTED_SCHEMAS_SQL:
            assert params is not None
            return list(self.database.granted_schema_rows.get(params[0], []))
        if sql == CURRENT_DATABASE_SQL:
            return [(self.database.database_name,)]
        raise FakeDriverError(f"unexpected query: {sql}", "42601")

    def fetch_one(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Any] | None:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    def fetch_all(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Sequence[Any]]:
        return self._query(sql, params)

    def begin(self) -> None:
        if self.pending is not None:
            raise RuntimeError("Transaction already active.")
        self.pending = []

    def commit(self) -> None:
        pending, self.pending = self.pending, None
        if pending is None:
            raise RuntimeError("No active transaction. Call begin() first.")
        if self.database.commit_failure is not None:
            raise self.database.commit_failure
        for statement in pending:
            self.database.apply(statement)

    def rollback(self) -> None:
        if self.pending is None:
            raise RuntimeError("No active transaction. Call begin() first.")
        self.pending = None

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def quote_literal(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"


class FakeHandle(ConnectionHandle):
    def __init__(self, database: FakeDatabase, config: ConnectionConfig) -> None:
        self.database = database
        self.config = config
        self.alive = True
        self.closed = False
        self.pings = 0
        self.sessions_opened = 0
        self.ping_timeouts: list[float | None] = []
        self.session_timeouts: list[float | None] = []
        self.on_ping: Callable[[], None] | None = None

    def ping(self, timeout_seconds: float | None = None) -> None:
        self.pings += 1
        self.ping_timeouts.append(timeout_seconds)
        if self.on_ping is not None:
            self.on_ping()
        if self.closed:
            raise FakeDriverError("connection is closed", "08003")
        if not self.alive:
            raise FakeDriverError("server closed the connection unexpectedly", "08006")

    @contextmanager
    def session(self, timeout_seconds: float | None = None) -> Iterator[Session]:
        if self.closed:
            raise FakeDriverError("connection is closed", "08003")
        self.sessions_opened += 1
        self.session_timeouts.append(timeout_seconds)
        session = FakeSession(self.database)
        try:
            yield session
        finally:
            if session.in_transaction:
                session.rollback()

    def close(self) -> None:
        self.closed = True


class FakeDriver(Driver):
    def __init__(self, database: FakeDatabase) -> None:
        self.database = database
        self.handles: list[FakeHandle] = []
        self.open_failures: list[Exception] = []

    def open(self, config: ConnectionConfig) -> FakeHandle:
        if self.open_failures:
            raise self.open_failures.pop(0)
        handle = FakeHandle(self.database, config)
        self.handles.append(handle)
        return handle
