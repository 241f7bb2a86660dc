"""Injectable time source.

Cooldowns, approval TTLs and the "today" spend bucket all read time through a
``Clock`` so tests can cross expiry and cooldown boundaries deterministically.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from utils.utcnow import to_naive_utc, utc_date, utcnow


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> str:
        return utc_date(self.now())


class SystemClock(Clock):
    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = to_naive_utc(start) if start is not None else utcnow()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_naive_utc(value)

    def advance(self, delta: Optional[timedelta] = None, **kwargs: float) -> datetime:
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now


system_clock = SystemClock()
