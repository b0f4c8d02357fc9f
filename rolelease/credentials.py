from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime, timezone
import time
from typing import Any, Callable

from rolelease.execution.base import BorrowedHandle, Driver, Session
from rolelease.execution.connection import ConnectionConfig, ConnectionManager
from rolelease.execution.deadline import Deadline, check_deadline, remaining_or_none
from rolelease.execution.errors import normalize_driver_error
from rolelease.execution.observability import EventEmitter, ObservabilitySettings
from rolelease.execution.transaction import TransactionalExecutor
from rolelease.revocation.cascade import RevocationCascade
from rolelease.templating.statement_template import (
    EXPIRATION_TOKEN,
    NAME_TOKEN,
    PASSWORD_TOKEN,
    StatementTemplate,
)

# ==================================================
# PostgreSQL Credential Engine
# ==================================================

POSTGRES_TYPE_NAME = "postgres"

EXPIRATION_FORMAT = "%Y-%m-%d %H:%M:%S%z"


def format_expiration(expiration: str | datetime) -> str:
    """
    Renders an expiration for VALID UNTIL; naive datetimes are taken as UTC.
    """
    if isinstance(expiration, datetime):
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        return expiration.strftime(EXPIRATION_FORMAT)
    return expiration


class PostgreSQLCredentials:
    """
    Creates, renews and revokes short-lived PostgreSQL roles.

    One instance is meant to be shared by every caller thread; all
    operations borrow the single shared connection from the manager.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        driver: Driver | None = None,
        observability_settings: ObservabilitySettings | None = None,
    ) -> None:
        self._events = EventEmitter(POSTGRES_TYPE_NAME, observability_settings)
        self.connections = ConnectionManager(
            config,
            driver=driver,
            observability_settings=observability_settings,
        )
        self._transactions = TransactionalExecutor(self._events)
        self._cascade = RevocationCascade(self._events)

    def type(self) -> str:
        return POSTGRES_TYPE_NAME

    # ==================================================
    # Connection Lifecycle
    # ==================================================

    def connection(self, deadline: Deadline | None = None) -> AbstractContextManager[BorrowedHandle]:
        return self.connections.connection(deadline)

    def close(self) -> None:
        self.connections.close()

    def reset(self, config: ConnectionConfig) -> BorrowedHandle:
        return self.connections.reset(config)

    def __enter__(self) -> "PostgreSQLCredentials":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        _ = exc_type
        _ = exc
        _ = tb
        self.close()

    # ==================================================
    # Credential Operations
    # ==================================================

    def create_user(
        self,
        statements: str,
        username: str,
        password: str,
        expiration: str | datetime,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """
        Runs the creation script in one transaction.

        The script may use {{name}}, {{password}} and {{expiration}};
        {{name}} is required.
        """
        template = StatementTemplate(statements)
        values = {
            NAME_TOKEN: username,
            PASSWORD_TOKEN: password,
            EXPIRATION_TOKEN: format_expiration(expiration),
        }

        def _create(session: Session) -> None:
            rendered = template.render(values)
            self._transactions.run(session, rendered, operation="create_user", role=username, deadline=deadline)

        self._run(
            "create_user",
            "credential.create",
            username,
            deadline,
            _create,
            validate=lambda: template.validate(values),
        )

    def renew_user(self, username: str, expiration: str | datetime, *, deadline: Deadline | None = None) -> None:
        def _renew(session: Session) -> None:
            statement = "ALTER ROLE {} VALID UNTIL {};".format(
                session.quote_identifier(username),
                session.quote_literal(format_expiration(expiration)),
            )
            check_deadline(deadline, operation="renew_user", step="ALTER ROLE")
            session.execute(statement, timeout_seconds=remaining_or_none(deadline))

        self._run("renew_user", "credential.renew", username, deadline, _renew)

    def custom_revoke_user(self, username: str, statements: str, *, deadline: Deadline | None = None) -> None:
        """
        Runs the operator's revocation script in one transaction.
        """
        template = StatementTemplate(statements)
        values = {NAME_TOKEN: username}

        def _revoke(session: Session) -> None:
            rendered = template.render(values)
            self._transactions.run(session, rendered, operation="custom_revoke_user", role=username, deadline=deadline)

        self._run(
            "custom_revoke_user",
            "credential.revoke",
            username,
            deadline,
            _revoke,
            validate=lambda: template.validate(values),
        )

    def default_revoke_user(self, username: str, *, deadline: Deadline | None = None) -> None:
        self._run(
            "default_revoke_user",
            "credential.revoke",
            username,
            deadline,
            lambda session: self._cascade.run(session, username, deadline=deadline),
        )

    def revoke_user(self, username: str, statements: str | None = None, *, deadline: Deadline | None = None) -> None:
        """
        Custom revocation when a non-blank script is given, default otherwise.
        """
        if statements and statements.strip():
            self.custom_revoke_user(username, statements, deadline=deadline)
            return
        self.default_revoke_user(username, deadline=deadline)

    # ==================================================
    # Operation Runner
    # ==================================================

    def _run(
        self,
        operation: str,
        event: str,
        role: str,
        deadline: Deadline | None,
        work: Callable[[Session], None],
        *,
        validate: Callable[[], None] | None = None,
    ) -> None:
        started = time.perf_counter()
        try:
            if validate is not None:
                # Reject malformed scripts before touching the connection.
                validate()
            check_deadline(deadline, operation=operation, step="the operation started")
            with self.connections.connection(deadline) as handle:
                with handle.session() as session:
                    work(session)
        except Exception as exc:
            normalized = normalize_driver_error(operation=operation, exc=exc)
            self._events.emit(
                event,
                success=False,
                operation=operation,
                role=role,
                duration_ms=(time.perf_counter() - started) * 1000,
                error_type=type(normalized).__name__,
                error_code=normalized.details.sqlstate,
                error_message=str(normalized),
            )
            if normalized is exc:
                raise
            raise normalized from exc

        self._events.emit(
            event,
            success=True,
            operation=operation,
            role=role,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
