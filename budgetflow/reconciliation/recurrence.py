"""
Recurrence Engine

Computes the next occurrence of a recurring rule. Monthly and yearly
steps keep the rule's anchor day where the target month allows it and
clamp to the month's last day otherwise (Jan 31 -> Feb 29 -> Mar 31).
"""

from datetime import date, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from budgetflow.errors import ConfigurationError
from budgetflow.models.budget import Frequency


def parse_frequency(value: Union[str, Frequency]) -> Frequency:
    """
    Validate a frequency at rule-creation time.

    Raises:
        ConfigurationError: If the value isn't weekly, monthly or yearly
    """
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(f.value for f in Frequency)
        raise ConfigurationError(
            f"Unrecognized frequency {value!r}; expected one of: {allowed}", e
        ) from e


def next_occurrence(
    from_date: date,
    frequency: Union[str, Frequency],
    anchor_day: Optional[int] = None,
) -> date:
    """
    The occurrence one frequency step after `from_date`.

    Args:
        from_date: Current occurrence
        frequency: weekly, monthly or yearly
        anchor_day: Preferred day of month; defaults to from_date.day

    Always returns a date strictly after `from_date`.
    """
    frequency = parse_frequency(frequency)

    if frequency is Frequency.WEEKLY:
        return from_date + timedelta(days=7)

    day = anchor_day or from_date.day
    if frequency is Frequency.MONTHLY:
        return from_date + relativedelta(months=+1, day=day)

    # Yearly: same month next year, Feb 29 clamps to Feb 28
    return from_date + relativedelta(years=+1, day=day)


def occurrences_through(
    first_due: date,
    until: date,
    frequency: Union[str, Frequency],
    anchor_day: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[date]:
    """All due dates from `first_due` up to and including `until`."""
    dates = []
    current = first_due
    while current <= until and (limit is None or len(dates) < limit):
        dates.append(current)
        current = next_occurrence(current, frequency, anchor_day)
    return dates
