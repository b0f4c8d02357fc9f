from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Sequence

from rolelease.execution.deadline import Deadline, bounded_timeout, check_deadline

# ==================================================
# Driver Capabilities
# ==================================================


class Session(ABC):
    """
    One checked-out driver connection, used by a single engine operation.

    Outside of begin()/commit() every statement is applied on its own.
    """

    @abstractmethod
    def execute(
        self,
        statement: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        """
        Executes a statement that returns no rows.
        """
        pass

    @abstractmethod
    def fetch_one(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Any] | None:
        """
        Executes a query and returns its first row.
        """
        pass

    @abstractmethod
    def fetch_all(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Sequence[Sequence[Any]]:
        """
        Executes a query and returns all resulting rows.
        """
        pass

    @abstractmethod
    def begin(self) -> None:
        """
        Begins an explicit transaction.
        """
        pass

    @abstractmethod
    def commit(self) -> None:
        """
        Commits the active explicit transaction.
        """
        pass

    @abstractmethod
    def rollback(self) -> None:
        """
        Rolls back the active explicit transaction.
        """
        pass

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """
        Renders a role, schema or database name as a quoted identifier.
        """
        pass

    @abstractmethod
    def quote_literal(self, value: str) -> str:
        """
        Renders a value as a quoted string literal.
        """
        pass


class ConnectionHandle(ABC):
    """
    The shared, pooled connection owned by a ConnectionManager.
    """

    @abstractmethod
    def ping(self, timeout_seconds: float | None = None) -> None:
        """
        Raises when the database cannot be reached through this handle.

        A handle whose connections are all busy is reachable and must not
        raise.
        """
        pass

    @abstractmethod
    def session(self, timeout_seconds: float | None = None) -> AbstractContextManager[Session]:
        """
        Checks out a Session for the duration of the context, waiting at
        most timeout_seconds for a free connection.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Closes every pooled connection. The handle is unusable afterwards.
        """
        pass


class Driver(ABC):
    """
    Opens ConnectionHandles from a ConnectionConfig.
    """

    @abstractmethod
    def open(self, config: Any) -> ConnectionHandle:
        pass


# ==================================================
# Borrowed Handle View
# ==================================================


class BorrowedHandle:
    """
    Read-only view of the shared handle lent out for one operation.

    It can check out sessions but cannot close or replace the handle; that
    stays with the ConnectionManager. Checkouts wait no longer than what is
    left of the operation's deadline.
    """

    __slots__ = ("_handle", "_generation", "_deadline", "_checkout_timeout")

    def __init__(
        self,
        handle: ConnectionHandle,
        generation: int,
        deadline: Deadline | None = None,
        checkout_timeout_seconds: float | None = None,
    ) -> None:
        self._handle = handle
        self._generation = generation
        self._deadline = deadline
        self._checkout_timeout = checkout_timeout_seconds

    @property
    def generation(self) -> int:
        return self._generation

    def session(self) -> AbstractContextManager[Session]:
        check_deadline(self._deadline, operation="connection", step="session checkout")
        return self._handle.session(bounded_timeout(self._checkout_timeout, self._deadline))

    def __repr__(self) -> str:
        return f"BorrowedHandle(generation={self._generation})"
