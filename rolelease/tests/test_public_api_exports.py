from rolelease import (
    __version__,
    AggregateRevocationError,
    ConnectionConfig,
    Deadline,
    InMemoryMetricsAdapter,
    ObservabilitySettings,
    PostgreSQLCredentials,
    RevocationCascade,
    StatementTemplate,
    split_statements,
)
from rolelease.execution import MetricPoint, PostgresDriver
from rolelease.revocation import RevocationPlan
from rolelease.templating import render_statements


def test_root_public_api_exports_are_importable() -> None:
    assert __version__
    assert PostgreSQLCredentials is not None
    assert ConnectionConfig is not None
    assert ObservabilitySettings is not None
    assert InMemoryMetricsAdapter is not None
    assert AggregateRevocationError is not None
    assert Deadline is not None
    assert RevocationCascade is not None
    assert StatementTemplate is not None


def test_subpackage_exports() -> None:
    assert PostgresDriver is not None
    assert RevocationPlan(role="r").statements == []
    assert render_statements("CREATE ROLE {{name}}", {"name": "x"}) == split_statements("CREATE ROLE x")


def test_execution_exports_include_metric_point() -> None:
    metric = MetricPoint(name="count", labels={"engine": "postgres"}, value=1)
    assert metric.name == "count"
