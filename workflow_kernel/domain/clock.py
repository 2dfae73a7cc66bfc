"""
Clock -- where step timestamps come from.

started_at, completed_at, canceled_at, history ``at`` values, cycle-time
metrics and notification ``scheduled_for`` are all read from an injected
Clock, so tests can walk an instance through hours of work without
sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Tests start every instance at the same moment.
DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Stands still until advanced.

    Two calls to ``now()`` with no ``advance()`` between them return the
    same instant, so a start and a completion in one test step have a
    zero cycle time.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now
