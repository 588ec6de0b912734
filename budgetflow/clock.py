"""Injectable clock so reconciliation can be driven from tests."""

from abc import ABC, abstractmethod
from datetime import date


class Clock(ABC):
    """Source of "today" for every reconciliation step."""

    @abstractmethod
    def today(self) -> date:
        pass


class SystemClock(Clock):
    def today(self) -> date:
        return date.today()


class FixedClock(Clock):
    """Clock pinned to a date. `advance_to` moves it forward."""

    def __init__(self, current: date):
        self._current = current

    def today(self) -> date:
        return self._current

    def advance_to(self, new_date: date) -> None:
        self._current = new_date
