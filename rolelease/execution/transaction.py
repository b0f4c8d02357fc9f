from __future__ import annotations

import time
from typing import Sequence
from uuid import uuid4

from rolelease.execution.base import Session
from rolelease.execution.deadline import Deadline, remaining_or_none
from rolelease.execution.errors import (
    CredentialErrorDetails,
    DeadlineExceededError,
    TransactionError,
    normalize_driver_error,
)
from rolelease.execution.observability import EventEmitter

# ==================================================
# Transactional Executor
# ==================================================


class TransactionalExecutor:
    """
    Runs an ordered statement list inside one all-or-nothing transaction.

    Non-transactional DDL (CREATE DATABASE, some role attributes on other
    backends) escapes the rollback; PostgreSQL role DDL does not.
    """

    def __init__(self, events: EventEmitter) -> None:
        self._events = events

    def run(
        self,
        session: Session,
        statements: Sequence[str],
        *,
        operation: str,
        role: str | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        transaction_id = uuid4().hex
        started = time.perf_counter()
        try:
            session.begin()
        except Exception as exc:
            raise normalize_driver_error(operation=operation, exc=exc, default=TransactionError) from exc
        self._events.emit("txn.begin", success=True, operation=operation, role=role, transaction_id=transaction_id)

        try:
            for index, statement in enumerate(statements):
                if deadline is not None and deadline.expired:
                    raise DeadlineExceededError(
                        CredentialErrorDetails(
                            operation=operation,
                            sqlstate=None,
                            original_message=(
                                f"{deadline.reason()} before statement {index + 1} of {len(statements)}"
                            ),
                        )
                    )
                self._execute(session, statement, index, operation, role, transaction_id, deadline)
        except BaseException as exc:
            self._rollback(session, operation, role, transaction_id, started)
            if not isinstance(exc, Exception):
                raise
            normalized = normalize_driver_error(operation=operation, exc=exc, default=TransactionError)
            if normalized is exc:
                raise
            raise normalized from exc

        try:
            session.commit()
        except Exception as exc:
            self._events.emit(
                "txn.commit",
                success=False,
                operation=operation,
                role=role,
                transaction_id=transaction_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
            raise normalize_driver_error(operation=operation, exc=exc, default=TransactionError) from exc
        self._events.emit(
            "txn.commit",
            success=True,
            operation=operation,
            role=role,
            transaction_id=transaction_id,
            duration_ms=(time.perf_counter() - started) * 1000,
            statement_count=len(statements),
        )

    def _execute(
        self,
        session: Session,
        statement: str,
        index: int,
        operation: str,
        role: str | None,
        transaction_id: str,
        deadline: Deadline | None,
    ) -> None:
        started = time.perf_counter()
        try:
            session.execute(statement, timeout_seconds=remaining_or_none(deadline))
        except Exception as exc:
            # Statements may embed passwords, so only the position is reported.
            self._events.emit(
                "statement.end",
                success=False,
                operation=operation,
                role=role,
                statement=f"statement {index + 1}",
                transaction_id=transaction_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                error_type=type(exc).__name__,
                error_code=getattr(exc, "sqlstate", None),
                error_message=str(exc),
            )
            raise
        self._events.emit(
            "statement.end",
            success=True,
            operation=operation,
            role=role,
            statement=f"statement {index + 1}",
            transaction_id=transaction_id,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _rollback(
        self,
        session: Session,
        operation: str,
        role: str | None,
        transaction_id: str,
        started: float,
    ) -> None:
        try:
            session.rollback()
        except Exception as exc:
            self._events.emit(
                "txn.rollback",
                success=False,
                operation=operation,
                role=role,
                transaction_id=transaction_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
            return
        self._events.emit(
            "txn.rollback",
            success=True,
            operation=operation,
            role=role,
            transaction_id=transaction_id,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
