"""
BudgetFlow - Source Package

Budget period and recurring-expense reconciliation for a personal
finance tracker.

DESIGN PRINCIPLES:
1. A recurring obligation is posted at most once per due date
2. Periods are derived, never trusted from storage
3. Background reconciliation never blocks the user
4. Every posting is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "BudgetFlow Team"
