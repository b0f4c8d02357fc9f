from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import logging
import time
from typing import Any, Iterator, Mapping

from rolelease.execution.base import BorrowedHandle, ConnectionHandle, Driver
from rolelease.execution.deadline import Deadline, bounded_timeout, check_deadline
from rolelease.execution.errors import CredentialErrorDetails, DatabaseConnectionError
from rolelease.execution.locks import ReadWriteLock
from rolelease.execution.observability import EventEmitter, ObservabilitySettings

logger = logging.getLogger(__name__)

# ==================================================
# Connection Configuration
# ==================================================

DEFAULT_MAX_OPEN_CONNECTIONS = 2
DEFAULT_MAX_IDLE_CONNECTIONS = 0

_SECRET_CONNINFO_KEYS = ("password", "sslpassword")


def _coerce_count(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    if isinstance(value, str):
        value = value.strip()
        if not value.lstrip("-").isdigit():
            raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable connection settings for one ConnectionManager.

    A max_open_connections of 0 means no explicit limit. A non-zero
    max_open_connections caps max_idle_connections.
    """

    connection_url: str
    max_open_connections: int = DEFAULT_MAX_OPEN_CONNECTIONS
    max_idle_connections: int = DEFAULT_MAX_IDLE_CONNECTIONS
    connect_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.connection_url, str) or not self.connection_url.strip():
            raise ValueError("connection_url must be a non-empty string")
        if self.max_open_connections < 0:
            raise ValueError("max_open_connections must be >= 0")
        if self.max_idle_connections < 0:
            raise ValueError("max_idle_connections must be >= 0")
        if self.connect_timeout_seconds is not None and self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")

    @property
    def effective_max_idle_connections(self) -> int:
        if self.max_open_connections and self.max_idle_connections > self.max_open_connections:
            return self.max_open_connections
        return self.max_idle_connections

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ConnectionConfig":
        """
        Builds a config from plugin-supplied settings.

        Numeric values may arrive as strings; unknown keys are ignored.
        """
        url = values.get("connection_url")
        if not url:
            raise ValueError("connection_url is required")
        timeout = values.get("connect_timeout_seconds")
        return cls(
            connection_url=str(url),
            max_open_connections=_coerce_count(
                values.get("max_open_connections", DEFAULT_MAX_OPEN_CONNECTIONS),
                "max_open_connections",
            ),
            max_idle_connections=_coerce_count(
                values.get("max_idle_connections", DEFAULT_MAX_IDLE_CONNECTIONS),
                "max_idle_connections",
            ),
            connect_timeout_seconds=None if timeout in (None, "") else float(timeout),
        )

    def redacted_url(self) -> str:
        """
        The connection string as key/value conninfo with secrets replaced, for
        logs. URL and key/value forms are both parsed by libpq.
        """
        from psycopg import ProgrammingError
        from psycopg.conninfo import conninfo_to_dict, make_conninfo

        try:
            params = conninfo_to_dict(self.connection_url)
        except ProgrammingError:
            return "<unparseable connection string>"
        for key in _SECRET_CONNINFO_KEYS:
            if key in params:
                params[key] = "***"
        return str(make_conninfo("", **params))


# ==================================================
# Connection Manager
# ==================================================


class ConnectionManager:
    """
    Owns the single shared ConnectionHandle.

    Operations borrow the handle under the shared lock through connection().
    Opening, replacing and closing the handle take the exclusive lock, so a
    handle is never closed while an operation is still using it.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        driver: Driver | None = None,
        observability_settings: ObservabilitySettings | None = None,
    ) -> None:
        if driver is None:
            from rolelease.execution.postgres import PostgresDriver

            driver = PostgresDriver()
        self._config = config
        self._driver = driver
        self._lock = ReadWriteLock()
        self._handle: ConnectionHandle | None = None
        self._generation = 0
        self._events = EventEmitter("connection_manager", observability_settings)

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def generation(self) -> int:
        """
        Incremented every time the shared handle is opened or discarded.
        """
        return self._generation

    @contextmanager
    def connection(self, deadline: Deadline | None = None) -> Iterator[BorrowedHandle]:
        """
        Yields a live handle for one operation.

        A dead handle is closed and replaced transparently; only a failure to
        open a new one is raised, as DatabaseConnectionError. The health check
        and later session checkouts wait no longer than the deadline allows.
        """
        self._lock.acquire_read()
        try:
            handle = self._handle
            generation = self._generation
            if handle is not None and not self._is_alive(handle, deadline):
                handle = None
        except BaseException:
            self._lock.release_read()
            raise

        if handle is None:
            self._lock.release_read()
            self._lock.acquire_write()
            try:
                handle = self._handle
                if handle is None or self._generation == generation:
                    handle = self._reconnect_locked()
                generation = self._generation
            except BaseException:
                self._lock.release_write()
                raise
            self._lock.downgrade()

        try:
            yield BorrowedHandle(handle, generation, deadline, self._config.connect_timeout_seconds)
        finally:
            self._lock.release_read()

    def close(self) -> None:
        """
        Closes and discards the shared handle. Safe to call repeatedly.
        """
        self._lock.acquire_write()
        try:
            self._discard_locked()
        finally:
            self._lock.release_write()

    def reset(self, config: ConnectionConfig) -> BorrowedHandle:
        """
        Replaces the config and reconnects in one exclusive section.

        The returned handle is informational: operations must still go
        through connection().
        """
        self._lock.acquire_write()
        try:
            self._config = config
            handle = self._reconnect_locked()
            self._events.emit(
                "connection.reset",
                success=True,
                connection_generation=self._generation,
            )
            return BorrowedHandle(handle, self._generation, None, config.connect_timeout_seconds)
        finally:
            self._lock.release_write()

    # ==================================================
    # Lock-Held Helpers
    # ==================================================

    def _is_alive(self, handle: ConnectionHandle, deadline: Deadline | None) -> bool:
        check_deadline(deadline, operation="connection", step="health check")
        try:
            handle.ping(bounded_timeout(self._config.connect_timeout_seconds, deadline))
            return True
        except Exception as exc:
            # A check cut short by the caller's deadline says nothing about the handle.
            check_deadline(deadline, operation="connection", step="health check completed")
            logger.warning("Shared connection failed its health check; reconnecting: %s", exc)
            self._events.emit(
                "connection.ping.failed",
                success=False,
                connection_generation=self._generation,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
            return False

    def _reconnect_locked(self) -> ConnectionHandle:
        self._discard_locked()
        return self._open_locked()

    def _discard_locked(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        self._generation += 1
        try:
            handle.close()
        except Exception as exc:
            logger.warning("Ignoring error while closing the shared connection: %s", exc)
        self._events.emit("connection.close", success=True, connection_generation=self._generation)

    def _open_locked(self) -> ConnectionHandle:
        started = time.perf_counter()
        try:
            handle = self._driver.open(self._config)
        except Exception as exc:
            self._events.emit(
                "connection.open",
                success=False,
                connection_generation=self._generation,
                duration_ms=(time.perf_counter() - started) * 1000,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
            raise DatabaseConnectionError(
                CredentialErrorDetails(
                    operation="connection",
                    sqlstate=getattr(exc, "sqlstate", None),
                    original_message=f"could not connect to {self._config.redacted_url()}: {exc}",
                ),
                exc,
            ) from exc
        self._handle = handle
        self._generation += 1
        logger.debug("Opened shared connection generation %d", self._generation)
        self._events.emit(
            "connection.open",
            success=True,
            connection_generation=self._generation,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return handle
