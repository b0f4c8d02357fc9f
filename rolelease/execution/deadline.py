from __future__ import annotations

import threading
import time
from typing import Callable

from rolelease.execution.errors import CredentialErrorDetails, DeadlineExceededError

# ==================================================
# Operation Deadlines
# ==================================================


class Deadline:
    """
    Optional time budget and cancellation token for one engine operation.

    A deadline with no timeout never expires on its own but can still be
    cancelled from another thread.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        self._clock = clock
        self._expires_at = None if timeout_seconds is None else clock() + timeout_seconds
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        """
        Seconds left, None when unbounded, 0.0 once expired or cancelled.
        """
        if self.cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def reason(self) -> str:
        return "operation cancelled" if self.cancelled else "deadline exceeded"


def remaining_or_none(deadline: Deadline | None) -> float | None:
    if deadline is None:
        return None
    return deadline.remaining()


def bounded_timeout(timeout_seconds: float | None, deadline: Deadline | None) -> float | None:
    """
    The smaller of a configured timeout and what is left of the deadline.
    """
    remaining = remaining_or_none(deadline)
    if remaining is None:
        return timeout_seconds
    if timeout_seconds is None:
        return remaining
    return min(timeout_seconds, remaining)


def check_deadline(deadline: Deadline | None, *, operation: str, step: str) -> None:
    """
    Raises DeadlineExceededError when the deadline is already spent.
    """
    if deadline is not None and deadline.expired:
        raise DeadlineExceededError(
            CredentialErrorDetails(
                operation=operation,
                sqlstate=None,
                original_message=f"{deadline.reason()} before {step}",
            )
        )
