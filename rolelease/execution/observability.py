from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import Any, Callable, Mapping

# ==================================================
# Observability Types
# ==================================================

EventObserveHook = Callable[["CredentialEvent"], None]
LabelMap = Mapping[str, str]


@dataclass(frozen=True)
class ObservabilitySettings:
    """
    Credential engine observability settings.
    """

    event_observer: EventObserveHook | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CredentialEvent:
    """
    Structured credential lifecycle event payload.

    Never carries passwords or rendered statements containing them.
    """

    timestamp: str
    event: str
    engine: str
    success: bool
    metadata: Mapping[str, Any] = field(default_factory=dict)
    operation: str | None = None
    role: str | None = None
    statement: str | None = None
    transaction_id: str | None = None
    connection_generation: int | None = None
    duration_ms: float | None = None
    statement_count: int | None = None
    failure_count: int | None = None
    outcome: str | None = None
    error_type: str | None = None
    error_code: str | None = None
    error_message: str | None = None


def credential_event_to_dict(event: CredentialEvent) -> dict[str, Any]:
    """
    Converts a CredentialEvent dataclass into a JSON-safe dictionary.
    """

    return {
        "timestamp": event.timestamp,
        "event": event.event,
        "engine": event.engine,
        "success": event.success,
        "metadata": dict(event.metadata),
        "operation": event.operation,
        "role": event.role,
        "statement": event.statement,
        "transaction_id": event.transaction_id,
        "connection_generation": event.connection_generation,
        "duration_ms": event.duration_ms,
        "statement_count": event.statement_count,
        "failure_count": event.failure_count,
        "outcome": event.outcome,
        "error_type": event.error_type,
        "error_code": event.error_code,
        "error_message": event.error_message,
    }


def make_json_event_logger(
    *,
    logger: logging.Logger,
    level: int = logging.INFO,
    failure_level: int = logging.WARNING,
) -> EventObserveHook:
    """
    Builds an EventObserveHook that emits one JSON log line per CredentialEvent.
    """

    def _log_event(event: CredentialEvent) -> None:
        payload = credential_event_to_dict(event)
        logger.log(
            level if event.success else failure_level,
            json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str),
        )

    return _log_event


def compose_event_observers(*observers: EventObserveHook) -> EventObserveHook:
    """
    Composes multiple event observers into a single observer.
    """

    def _composed(event: CredentialEvent) -> None:
        for observer in observers:
            observer(event)

    return _composed


def now_iso_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventEmitter:
    """
    Stamps and dispatches events on behalf of one component.
    """

    def __init__(self, engine: str, settings: ObservabilitySettings | None = None) -> None:
        self.engine = engine
        self.settings = settings or ObservabilitySettings()

    def emit(self, event: str, *, success: bool, **kwargs: Any) -> None:
        if self.settings.event_observer is None:
            return
        self.settings.event_observer(
            CredentialEvent(
                timestamp=now_iso_utc(),
                event=event,
                engine=self.engine,
                success=success,
                metadata=dict(self.settings.metadata),
                **kwargs,
            )
        )


# ==================================================
# In-Memory Metrics
# ==================================================


def _normalize_label(value: str | None, *, fallback: str) -> str:
    if value is None:
        return fallback
    stripped = value.strip()
    return stripped if stripped else fallback


def _event_labels(event: CredentialEvent) -> dict[str, str]:
    return {
        "engine": _normalize_label(event.engine, fallback="unknown"),
        "operation": _normalize_label(event.operation, fallback="unknown"),
        "event": _normalize_label(event.event, fallback="unknown"),
        "error_type": _normalize_label(event.error_type, fallback="none"),
    }


def _labels_key(labels: LabelMap) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(key), str(value)) for key, value in labels.items()))


@dataclass(frozen=True)
class MetricPoint:
    """
    Single metric point lookup result.
    """

    name: str
    labels: Mapping[str, str]
    value: int | float


class InMemoryMetricsAdapter:
    """
    In-memory metrics adapter for CredentialEvent streams.
    """

    def __init__(self) -> None:
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}
        self._histograms: dict[tuple[str, tuple[tuple[str, str], ...]], list[float]] = {}

    def __call__(self, event: CredentialEvent) -> None:
        labels = _event_labels(event)
        if event.event.startswith("credential."):
            self._inc("rolelease_operations_total", labels, 1)
            if not event.success:
                self._inc("rolelease_operation_failures_total", labels, 1)
            if event.duration_ms is not None:
                self._observe("rolelease_operation_duration_ms", labels, event.duration_ms)
            return

        if event.event in {"statement.end", "cascade.statement"}:
            self._inc("rolelease_statements_total", labels, 1)
            if not event.success:
                self._inc("rolelease_statement_failures_total", labels, 1)
            if event.duration_ms is not None:
                self._observe("rolelease_statement_duration_ms", labels, event.duration_ms)
            return

        if event.event == "cascade.gated":
            self._inc("rolelease_revocations_gated_total", labels, 1)
            return

        if event.event in {"txn.commit", "txn.rollback"} and event.duration_ms is not None:
            self._observe("rolelease_txn_duration_ms", labels, event.duration_ms)
            return

        if event.event in {"connection.open", "connection.ping.failed"}:
            self._inc(f"rolelease_{event.event.replace('.', '_')}_total", labels, 1)

    def _inc(self, metric: str, labels: LabelMap, delta: int) -> None:
        key = (metric, _labels_key(labels))
        self._counters[key] = self._counters.get(key, 0) + delta

    def _observe(self, metric: str, labels: LabelMap, value: float) -> None:
        key = (metric, _labels_key(labels))
        bucket = self._histograms.setdefault(key, [])
        bucket.append(value)

    def counter_value(self, metric: str, labels: LabelMap) -> int:
        return self._counters.get((metric, _labels_key(labels)), 0)

    def histogram_values(self, metric: str, labels: LabelMap) -> list[float]:
        values = self._histograms.get((metric, _labels_key(labels)), [])
        return list(values)

    def counters(self) -> list[MetricPoint]:
        points: list[MetricPoint] = []
        for (name, label_key), value in self._counters.items():
            points.append(MetricPoint(name=name, labels=dict(label_key), value=value))
        return points

    def histograms(self) -> list[MetricPoint]:
        points: list[MetricPoint] = []
        for (name, label_key), values in self._histograms.items():
            for value in values:
                points.append(MetricPoint(name=name, labels=dict(label_key), value=value))
        return points
