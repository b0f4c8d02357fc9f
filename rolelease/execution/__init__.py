from rolelease.execution.base import BorrowedHandle, ConnectionHandle, Driver, Session
from rolelease.execution.connection import ConnectionConfig, ConnectionManager
from rolelease.execution.deadline import Deadline
from rolelease.execution.locks import ReadWriteLock
from rolelease.execution.postgres import PostgresConnectionHandle, PostgresDriver, PostgresSession
from rolelease.execution.transaction import TransactionalExecutor
from rolelease.execution.observability import (
    CredentialEvent,
    EventEmitter,
    InMemoryMetricsAdapter,
    MetricPoint,
    ObservabilitySettings,
    compose_event_observers,
    credential_event_to_dict,
    make_json_event_logger,
)
from rolelease.execution.errors import (
    AggregateRevocationError,
    CascadeDiscoveryError,
    CascadeStatementError,
    CredentialError,
    DatabaseConnectionError,
    DeadlineExceededError,
    ProgrammingStatementError,
    RevocationFailure,
    StatementCancelledError,
    StatementError,
    TemplatingError,
    TransactionError,
)

__all__ = [
    "BorrowedHandle",
    "ConnectionHandle",
    "Driver",
    "Session",
    "ConnectionConfig",
    "ConnectionManager",
    "Deadline",
    "ReadWriteLock",
    "PostgresConnectionHandle",
    "PostgresDriver",
    "PostgresSession",
    "TransactionalExecutor",
    "CredentialEvent",
    "EventEmitter",
    "InMemoryMetricsAdapter",
    "MetricPoint",
    "ObservabilitySettings",
    "compose_event_observers",
    "credential_event_to_dict",
    "make_json_event_logger",
    "AggregateRevocationError",
    "CascadeDiscoveryError",
    "CascadeStatementError",
    "CredentialError",
    "DatabaseConnectionError",
    "DeadlineExceededError",
    "ProgrammingStatementError",
    "RevocationFailure",
    "StatementCancelledError",
    "StatementError",
    "TemplatingError",
    "TransactionError",
]
