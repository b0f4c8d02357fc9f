from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Sequence

from rolelease.execution.base import Session
from rolelease.execution.deadline import Deadline, remaining_or_none
from rolelease.execution.errors import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_UNKNOWN,
    AggregateRevocationError,
    CascadeDiscoveryError,
    CascadeStatementError,
    CredentialErrorDetails,
    DeadlineExceededError,
    RevocationFailure,
    is_connection_loss,
    normalize_driver_error,
)
from rolelease.execution.observability import EventEmitter

logger = logging.getLogger(__name__)

# ==================================================
# Catalog Queries
# ==================================================

ROLE_EXISTS_SQL = "SELECT exists (SELECT rolname FROM pg_roles WHERE rolname=%s);"
GRANTED_SCHEMAS_SQL = "SELECT DISTINCT table_schema FROM information_schema.role_column_grants WHERE grantee=%s;"
CURRENT_DATABASE_SQL = "SELECT current_database();"

PUBLIC_SCHEMA = "public"

OPERATION = "default_revoke_user"


@dataclass
class RevocationPlan:
    """
    Ordered privilege-stripping statements for one role, rebuilt per call.
    """

    role: str
    statements: list[str] = field(default_factory=list)

    def add(self, statement: str) -> None:
        self.statements.append(statement)

    def __len__(self) -> int:
        return len(self.statements)


def _failure(
    step: str,
    statement: str | None,
    exc: BaseException | None,
    outcome: str,
    error_type: type[CascadeDiscoveryError] | type[CascadeStatementError],
) -> RevocationFailure:
    if exc is None:
        error = None
    else:
        normalized = normalize_driver_error(operation=OPERATION, exc=exc)
        error = error_type(normalized.details, exc)
    return RevocationFailure(step=step, statement=statement, error=error, outcome=outcome)


# ==================================================
# Revocation Cascade
# ==================================================


class RevocationCascade:
    """
    Default revocation: strip every privilege the role holds, then drop it.

    Revocation is best effort: each statement runs on its own and a failure
    never stops the remaining ones. The drop is conservative: it only runs
    when discovery and every revocation statement succeeded. Otherwise an
    AggregateRevocationError lists every failure and the role stays.
    """

    def __init__(self, events: EventEmitter) -> None:
        self._events = events

    def run(self, session: Session, role: str, *, deadline: Deadline | None = None) -> None:
        if not self._role_exists(session, role, deadline):
            logger.debug("Role %s does not exist; nothing to revoke", role)
            return

        failures: list[RevocationFailure] = []
        plan = self.build_plan(session, role, failures, deadline)
        self._execute_plan(session, plan, failures, deadline)

        if failures:
            logger.warning(
                "Not dropping role %s: %d revocation step(s) did not succeed",
                role,
                len(failures),
            )
            self._events.emit(
                "cascade.gated",
                success=False,
                operation=OPERATION,
                role=role,
                statement_count=len(plan),
                failure_count=len(failures),
            )
            raise AggregateRevocationError(role, failures)

        self._drop_role(session, role, deadline)

    # ==================================================
    # Steps
    # ==================================================

    def _role_exists(self, session: Session, role: str, deadline: Deadline | None) -> bool:
        self._check_deadline(deadline, "existence check")
        try:
            row = session.fetch_one(ROLE_EXISTS_SQL, [role], timeout_seconds=remaining_or_none(deadline))
        except Exception as exc:
            raise normalize_driver_error(operation=OPERATION, exc=exc) from exc
        return bool(row and row[0])

    def discover_schemas(
        self,
        session: Session,
        role: str,
        failures: list[RevocationFailure],
        deadline: Deadline | None = None,
    ) -> list[str]:
        """
        Schemas holding column-level grants for the role.

        Unreadable rows and a failed query are recorded, not raised.
        """
        if deadline is not None and deadline.expired:
            failures.append(_failure("discovery", GRANTED_SCHEMAS_SQL, None, OUTCOME_SKIPPED, CascadeDiscoveryError))
            return []
        try:
            rows = session.fetch_all(GRANTED_SCHEMAS_SQL, [role], timeout_seconds=remaining_or_none(deadline))
        except Exception as exc:
            logger.warning("Could not list schemas granted to %s: %s", role, exc)
            failures.append(_failure("discovery", GRANTED_SCHEMAS_SQL, exc, OUTCOME_FAILED, CascadeDiscoveryError))
            return []

        schemas: list[str] = []
        for row in rows:
            try:
                schema = _scan_text(row)
            except (TypeError, ValueError, IndexError) as exc:
                failures.append(_failure("discovery", None, exc, OUTCOME_FAILED, CascadeDiscoveryError))
                continue
            schemas.append(schema)
        return schemas

    def build_plan(
        self,
        session: Session,
        role: str,
        failures: list[RevocationFailure],
        deadline: Deadline | None = None,
    ) -> RevocationPlan:
        plan = RevocationPlan(role=role)
        quoted_role = session.quote_identifier(role)

        for schema in self.discover_schemas(session, role, failures, deadline):
            quoted_schema = session.quote_identifier(schema)
            plan.add(f"REVOKE ALL PRIVILEGES ON ALL TABLES IN SCHEMA {quoted_schema} FROM {quoted_role};")
            plan.add(f"REVOKE USAGE ON SCHEMA {quoted_schema} FROM {quoted_role};")

        # public is revoked whether or not discovery found it
        plan.add(f"REVOKE ALL PRIVILEGES ON ALL TABLES IN SCHEMA {PUBLIC_SCHEMA} FROM {quoted_role};")
        plan.add(f"REVOKE ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA {PUBLIC_SCHEMA} FROM {quoted_role};")
        plan.add(f"REVOKE USAGE ON SCHEMA {PUBLIC_SCHEMA} FROM {quoted_role};")

        database = self._current_database(session, failures, deadline)
        if database is not None:
            plan.add(f"REVOKE CONNECT ON DATABASE {session.quote_identifier(database)} FROM {quoted_role};")
        return plan

    def _current_database(
        self,
        session: Session,
        failures: list[RevocationFailure],
        deadline: Deadline | None,
    ) -> str | None:
        if deadline is not None and deadline.expired:
            failures.append(_failure("discovery", CURRENT_DATABASE_SQL, None, OUTCOME_SKIPPED, CascadeDiscoveryError))
            return None
        try:
            row = session.fetch_one(CURRENT_DATABASE_SQL, timeout_seconds=remaining_or_none(deadline))
        except Exception as exc:
            failures.append(_failure("discovery", CURRENT_DATABASE_SQL, exc, OUTCOME_FAILED, CascadeDiscoveryError))
            return None
        if not row or row[0] is None:
            return None
        return str(row[0])

    def _execute_plan(
        self,
        session: Session,
        plan: RevocationPlan,
        failures: list[RevocationFailure],
        deadline: Deadline | None,
    ) -> None:
        for statement in plan.statements:
            if deadline is not None and deadline.expired:
                failures.append(_failure("revoke", statement, None, OUTCOME_SKIPPED, CascadeStatementError))
                self._emit_statement(plan.role, statement, OUTCOME_SKIPPED, None, None)
                continue

            started = time.perf_counter()
            try:
                session.execute(statement, timeout_seconds=remaining_or_none(deadline))
            except Exception as exc:
                outcome = OUTCOME_UNKNOWN if is_connection_loss(exc) else OUTCOME_FAILED
                logger.warning("Revocation statement %r failed (%s): %s", statement, outcome, exc)
                failures.append(_failure("revoke", statement, exc, outcome, CascadeStatementError))
                self._emit_statement(plan.role, statement, outcome, exc, started)
                continue
            self._emit_statement(plan.role, statement, "applied", None, started)

    def _drop_role(self, session: Session, role: str, deadline: Deadline | None) -> None:
        self._check_deadline(deadline, "drop role")
        statement = f"DROP ROLE IF EXISTS {session.quote_identifier(role)};"
        try:
            session.execute(statement, timeout_seconds=remaining_or_none(deadline))
        except Exception as exc:
            self._events.emit(
                "role.drop",
                success=False,
                operation=OPERATION,
                role=role,
                statement=statement,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
            raise normalize_driver_error(operation=OPERATION, exc=exc) from exc
        self._events.emit("role.drop", success=True, operation=OPERATION, role=role, statement=statement)

    # ==================================================
    # Helpers
    # ==================================================

    def _check_deadline(self, deadline: Deadline | None, step: str) -> None:
        if deadline is not None and deadline.expired:
            raise DeadlineExceededError(
                CredentialErrorDetails(
                    operation=OPERATION,
                    sqlstate=None,
                    original_message=f"{deadline.reason()} before {step}",
                )
            )

    def _emit_statement(
        self,
        role: str,
        statement: str,
        outcome: str,
        exc: BaseException | None,
        started: float | None,
    ) -> None:
        self._events.emit(
            "cascade.statement",
            success=outcome == "applied",
            operation=OPERATION,
            role=role,
            statement=statement,
            outcome=outcome,
            duration_ms=None if started is None else (time.perf_counter() - started) * 1000,
            error_type=type(exc).__name__ if exc is not None else None,
            error_code=getattr(exc, "sqlstate", None) if exc is not None else None,
            error_message=str(exc) if exc is not None else None,
        )


def _scan_text(row: Sequence[Any]) -> str:
    value = row[0]
    if not isinstance(value, str):
        raise TypeError(f"expected a schema name, got {type(value).__name__}")
    return value
