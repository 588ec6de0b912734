"""
Data Models Package

This package contains all Pydantic models used in BudgetFlow.
All data flowing through the system must conform to these schemas.
"""

from budgetflow.models.budget import (
    BudgetPeriod,
    BudgetSettings,
    CurrencyCode,
    ExpenseCategory,
    Frequency,
    LedgerEntry,
    PeriodSummary,
    ReconciliationReport,
    RecurringRule,
    SavingsGoal,
    ValidationIssue,
    ValidationResult,
    parse_amount,
)
from budgetflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "BudgetPeriod",
    "BudgetSettings",
    "CurrencyCode",
    "ExpenseCategory",
    "Frequency",
    "LedgerEntry",
    "PeriodSummary",
    "ReconciliationReport",
    "RecurringRule",
    "SavingsGoal",
    "ValidationIssue",
    "ValidationResult",
    "parse_amount",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
