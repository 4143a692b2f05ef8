"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that engine and service code
    never call ``datetime.now()`` directly, and a monotonic ``Deadline`` used
    to enforce caller-supplied operation timeouts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock and
    the default monotonic source, which are the sanctioned I/O boundaries
    for time).

Audit relevance:
    Every due-date comparison and every audit timestamp is traceable to an
    injected Clock instance, so overdue decisions can be replayed exactly.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time must receive a Clock instance
        via constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``now_utc()`` returns a UTC-normalized ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    @abstractmethod
    def now_utc(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until ``advance()``
          is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def advance(self, seconds: int = 1) -> None:
        self._advance_seconds += seconds


class Deadline:
    """
    Monotonic deadline for a single unit of work.

    Contract:
        Created at the start of an operation with an optional budget in
        seconds.  ``expired()`` is polled between phases; a ``None`` budget
        never expires.

    Non-goals:
        Does not interrupt running statements.  Statement-level limits are
        the database's job (``statement_timeout`` on PostgreSQL).
    """

    def __init__(
        self,
        timeout_seconds: float | None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._monotonic = monotonic
        self._started = monotonic()

    def elapsed(self) -> float:
        return self._monotonic() - self._started

    def remaining(self) -> float | None:
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - self.elapsed())

    def expired(self) -> bool:
        if self.timeout_seconds is None:
            return False
        return self.elapsed() >= self.timeout_seconds
