from rolelease.credentials import POSTGRES_TYPE_NAME, PostgreSQLCredentials, format_expiration
from rolelease.execution import (
    AggregateRevocationError,
    ConnectionConfig,
    ConnectionManager,
    CredentialError,
    CredentialEvent,
    DatabaseConnectionError,
    Deadline,
    DeadlineExceededError,
    InMemoryMetricsAdapter,
    ObservabilitySettings,
    RevocationFailure,
    StatementError,
    TemplatingError,
    TransactionError,
    compose_event_observers,
    make_json_event_logger,
)
from rolelease.revocation import RevocationCascade, RevocationPlan
from rolelease.templating import StatementTemplate, split_statements

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "POSTGRES_TYPE_NAME",
    "PostgreSQLCredentials",
    "format_expiration",
    "AggregateRevocationError",
    "ConnectionConfig",
    "ConnectionManager",
    "CredentialError",
    "CredentialEvent",
    "DatabaseConnectionError",
    "Deadline",
    "DeadlineExceededError",
    "InMemoryMetricsAdapter",
    "ObservabilitySettings",
    "RevocationFailure",
    "StatementError",
    "TemplatingError",
    "TransactionError",
    "compose_event_observers",
    "make_json_event_logger",
    "RevocationCascade",
    "RevocationPlan",
    "StatementTemplate",
    "split_statements",
]
