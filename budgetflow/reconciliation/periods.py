"""
Budget Period Calculator and Ledger Filter

A budget period is either the calendar month or, when the user enables
a reset day, the span from one reset day to the day before the next.

DESIGN DECISION: Day-of-month arithmetic clamps to the last valid day
of the target month. A reset day of 31 therefore means "the last day"
in 30-day months and in February, and never rolls over into the next
month. relativedelta's absolute `day=` gives exactly this behaviour.
"""

from datetime import date, timedelta
from typing import Optional, Sequence, TypeVar

from dateutil.relativedelta import relativedelta

from budgetflow.models.budget import BudgetPeriod


T = TypeVar("T")


def month_bounds(day: date) -> BudgetPeriod:
    """The calendar month containing `day`."""
    return BudgetPeriod(
        period_start=day + relativedelta(day=1),
        period_end=day + relativedelta(day=31),
    )


def reset_date_in_month(day: date, reset_day: int, months: int = 0) -> date:
    """Where a reset day falls in the month of `day`, shifted by `months`."""
    return day + relativedelta(months=months, day=reset_day)


def compute_period(now: date, reset_day: int, reset_enabled: bool) -> BudgetPeriod:
    """
    Budget period containing `now`.

    Disabled resets give the calendar month. Otherwise the period starts
    on the most recent reset date on or before `now` and ends the day
    before the following one.
    """
    if not reset_enabled:
        return month_bounds(now)

    this_month_reset = reset_date_in_month(now, reset_day)
    if now >= this_month_reset:
        start = this_month_reset
        next_start = reset_date_in_month(now, reset_day, months=+1)
    else:
        start = reset_date_in_month(now, reset_day, months=-1)
        next_start = this_month_reset

    return BudgetPeriod(period_start=start, period_end=next_start - timedelta(days=1))

def _entry_date(entry) -> date:
    if isinstance(entry, dict):
        return entry["date"]
    return entry.entry_date


def filter_by_period(entries: Sequence[T], period: Optional[BudgetPeriod]) -> Sequence[T]:
    """
    Entries dated within `period`, inclusive on both ends.

    Works on LedgerEntry models and on raw rows with a "date" key.
    Relative order is preserved. A missing period or empty input is
    returned unchanged.
    """
    if period is None or not entries:
        return entries
    return [entry for entry in entries if period.contains(_entry_date(entry))]
