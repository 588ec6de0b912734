"""
Reconciliation Package

Pure date logic (periods, recurrence) is re-exported here. The
processors that touch storage live in their own modules:

- reconciliation.due_rules: DueRuleProcessor
- reconciliation.fixed_expense: FixedExpenseInjector
- reconciliation.reset: ResetTracker, evaluate_reset_state
"""

from budgetflow.reconciliation.periods import (
    compute_period,
    filter_by_period,
    month_bounds,
    reset_date_in_month,
)
from budgetflow.reconciliation.recurrence import (
    next_occurrence,
    occurrences_through,
    parse_frequency,
)

__all__ = [
    # Periods
    "compute_period",
    "filter_by_period",
    "month_bounds",
    "reset_date_in_month",
    # Recurrence
    "next_occurrence",
    "occurrences_through",
    "parse_frequency",
]
