from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


# ==================================================
# Normalized Credential Errors
# ==================================================


@dataclass(slots=True)
class CredentialErrorDetails:
    """
    Structured metadata for normalized credential lifecycle errors.
    """

    operation: str
    sqlstate: str | None
    original_message: str


class CredentialError(Exception):
    """
    Base type for every error raised by the credential engine.
    """

    def __init__(
        self,
        details: CredentialErrorDetails,
        original_exception: BaseException | None = None,
    ) -> None:
        self.details = details
        self.original_exception = original_exception
        super().__init__(f"[{details.operation}] {self.__class__.__name__}: {details.original_message}")

    @classmethod
    def from_message(cls, operation: str, message: str) -> "CredentialError":
        return cls(CredentialErrorDetails(operation=operation, sqlstate=None, original_message=message))


class DatabaseConnectionError(CredentialError):
    """
    The shared handle could not be opened or validated.
    """


class TemplatingError(CredentialError):
    """
    A statement template is missing a mandatory token.
    """


class StatementError(CredentialError):
    """
    A single statement failed outside of a transaction.
    """


class ProgrammingStatementError(StatementError):
    pass


class StatementCancelledError(StatementError):
    pass


class TransactionError(CredentialError):
    """
    A transactional script failed and was rolled back.
    """


class DeadlineExceededError(CredentialError):
    pass


# ==================================================
# Revocation Cascade Errors
# ==================================================

OUTCOME_FAILED = "failed"
OUTCOME_UNKNOWN = "unknown"
OUTCOME_SKIPPED = "skipped"


@dataclass(frozen=True)
class RevocationFailure:
    """
    One recorded failure of the revocation cascade.

    `outcome` is "failed" when the server rejected the step, "unknown" when
    the connection was lost while the statement was in flight and "skipped"
    when the deadline expired before the step was attempted.
    """

    step: str
    statement: str | None
    error: BaseException | None
    outcome: str = OUTCOME_FAILED

    def describe(self) -> str:
        target = self.statement or self.step
        reason = str(self.error) if self.error is not None else "not attempted"
        return f"{self.outcome}: {target}: {reason}"


class CascadeDiscoveryError(CredentialError):
    pass


class CascadeStatementError(CredentialError):
    pass


class AggregateRevocationError(CredentialError):
    """
    Raised when any revocation step failed; the role was left in place.
    """

    def __init__(self, role: str, failures: Sequence[RevocationFailure]) -> None:
        self.role = role
        self.failures = tuple(failures)
        discovery = sum(1 for failure in self.failures if failure.step == "discovery")
        statements = len(self.failures) - discovery
        summary = "; ".join(failure.describe() for failure in self.failures)
        super().__init__(
            CredentialErrorDetails(
                operation="default_revoke_user",
                sqlstate=None,
                original_message=(
                    f"role {role!r} was not dropped: {discovery} discovery and "
                    f"{statements} revocation failure(s): {summary}"
                ),
            ),
            self.failures[-1].error if self.failures else None,
        )

    @property
    def discovery_failures(self) -> tuple[RevocationFailure, ...]:
        return tuple(failure for failure in self.failures if failure.step == "discovery")

    @property
    def statement_failures(self) -> tuple[RevocationFailure, ...]:
        return tuple(failure for failure in self.failures if failure.step != "discovery")


# ==================================================
# Driver Error Normalization
# ==================================================


def _extract_sqlstate(exc: BaseException) -> str | None:
    sqlstate = getattr(exc, "sqlstate", None)
    if isinstance(sqlstate, str) and sqlstate:
        return sqlstate.upper()

    pgcode = getattr(exc, "pgcode", None)
    if isinstance(pgcode, str) and pgcode:
        return pgcode.upper()

    return None


def is_connection_loss(exc: BaseException) -> bool:
    """
    True when the driver error means the connection dropped mid-statement.
    """
    sqlstate = _extract_sqlstate(exc)
    if sqlstate is not None:
        return sqlstate.startswith("08") or sqlstate in {"57P01", "57P02", "57P03"}
    message = str(exc).lower()
    return (
        "server closed the connection" in message
        or "connection is closed" in message
        or "consuming input failed" in message
        or "terminating connection" in message
    )


def normalize_driver_error(
    *,
    operation: str,
    exc: BaseException,
    default: type[CredentialError] = StatementError,
) -> CredentialError:
    """
    Maps psycopg exceptions onto the credential error taxonomy.
    """
    if isinstance(exc, CredentialError):
        return exc

    sqlstate = _extract_sqlstate(exc)
    details = CredentialErrorDetails(
        operation=operation,
        sqlstate=sqlstate,
        original_message=str(exc),
    )

    if default is not StatementError:
        return default(details, exc)

    if is_connection_loss(exc):
        return DatabaseConnectionError(details, exc)

    if sqlstate == "57014" or "canceling statement" in str(exc).lower():
        return StatementCancelledError(details, exc)

    if sqlstate and sqlstate[:2] == "42":
        return ProgrammingStatementError(details, exc)
    if "syntax error" in str(exc).lower():
        return ProgrammingStatementError(details, exc)

    return StatementError(details, exc)
