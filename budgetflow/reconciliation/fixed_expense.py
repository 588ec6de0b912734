"""
Fixed-Expense Injector

Posts the user's monthly fixed expenses (rent, utilities...) as one
ledger entry per calendar month, dated the day it is first posted.

Two guards keep it to one entry per month:
1. An existing entry with the fixed-expense title in the month
2. The idempotency key fixed:<user_id>:<YYYY-MM>, enforced by the store,
   for two invocations racing past the first check
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.config import AppSettings, get_settings
from budgetflow.errors import ValidationError
from budgetflow.models.budget import LedgerEntry, parse_amount
from budgetflow.reconciliation.periods import month_bounds
from budgetflow.services.ledger import LedgerService
from budgetflow.services.storage import DuplicateError


logger = structlog.get_logger(__name__)


def fixed_expense_key(user_id: str, day: date) -> str:
    return f"fixed:{user_id}:{day:%Y-%m}"


class FixedExpenseInjector:
    """Ensures the monthly fixed-expense entry exists."""

    def __init__(
        self,
        ledger: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._ledger = ledger
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    async def ensure_fixed_expense_posted(
        self,
        user_id: str,
        fixed_amount: Any,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Post this month's fixed expenses unless already posted.

        Returns:
            True if an entry was posted, False if the amount is zero or
            the month already has one

        Raises:
            ValidationError: If fixed_amount isn't a valid amount
        """
        try:
            amount = parse_amount(fixed_amount)
        except ValueError as e:
            raise ValidationError(f"Invalid fixed expense amount: {e}", cause=e) from e

        if amount <= 0:
            return False

        title = self._settings.fixed_expense_title
        month = month_bounds(today)
        existing = await self._ledger.find_entries_by_title(
            user_id, title, month.period_start, month.period_end
        )
        if existing:
            return False

        key = fixed_expense_key(user_id, today)
        entry = LedgerEntry(
            user_id=user_id,
            title=title,
            amount=amount,
            category=self._settings.fixed_expense_category,
            entry_date=today,
            is_recurring=True,
            idempotency_key=key,
        )

        try:
            await self._ledger.insert_materialized(entry)
        except DuplicateError:
            logger.info("fixed_expense_already_posted", user_id=user_id, idempotency_key=key)
            if self._audit_logger:
                await self._audit_logger.log_duplicate_skipped(user_id, key, correlation_id)
            return False

        if self._audit_logger:
            await self._audit_logger.log_fixed_expense_posted(
                user_id=user_id,
                entry_id=entry.id,
                amount=str(amount),
                month=f"{today:%Y-%m}",
                correlation_id=correlation_id,
            )
        return True
