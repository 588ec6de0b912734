"""
Reset Tracker

Starts a new budget period once a month, on the user's reset day.

State per user and calendar month:

    NO_RESET_CONFIGURED       reset disabled, never resets
    WAITING_FOR_RESET_DAY     enabled, reset day not reached this month
    RESET_DUE                 reset day reached, not yet applied
    RESET_APPLIED_THIS_MONTH  applied; stays here until the month changes

The stored current_period_start never moves backwards: a reset whose
new start is not after the stored one is skipped.
"""

from datetime import date
from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.models.budget import BudgetSettings
from budgetflow.reconciliation.periods import reset_date_in_month
from budgetflow.services.profile import ProfileService


logger = structlog.get_logger(__name__)


class ResetState(str, Enum):
    NO_RESET_CONFIGURED = "no_reset_configured"
    WAITING_FOR_RESET_DAY = "waiting_for_reset_day"
    RESET_DUE = "reset_due"
    RESET_APPLIED_THIS_MONTH = "reset_applied_this_month"


def evaluate_reset_state(settings: BudgetSettings, today: date) -> ResetState:
    """Where a user stands in this month's reset cycle."""
    if not settings.reset_enabled:
        return ResetState.NO_RESET_CONFIGURED

    last = settings.last_reset_date
    if last is not None and (last.year, last.month) == (today.year, today.month):
        return ResetState.RESET_APPLIED_THIS_MONTH

    if today < reset_date_in_month(today, settings.reset_day):
        return ResetState.WAITING_FOR_RESET_DAY

    return ResetState.RESET_DUE


class ResetTracker:
    """Applies due resets by persisting the new period markers."""

    def __init__(
        self,
        profiles: ProfileService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._profiles = profiles
        self._audit_logger = audit_logger

    async def check_and_process_reset(
        self,
        user_id: str,
        settings: BudgetSettings,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Apply this month's reset if it is due.

        Returns:
            True if a new period was started
        """
        state = evaluate_reset_state(settings, today)
        if state is not ResetState.RESET_DUE:
            logger.debug("reset_not_due", user_id=user_id, state=state.value)
            return False

        period_start = reset_date_in_month(today, settings.reset_day)
        previous = settings.current_period_start
        if previous is not None and period_start <= previous:
            logger.warning(
                "reset_skipped_would_regress",
                user_id=user_id,
                period_start=period_start.isoformat(),
                current_period_start=previous.isoformat(),
            )
            return False

        await self._profiles.update_reset_markers(user_id, today, period_start)
        logger.info("budget_period_reset", user_id=user_id, period_start=period_start.isoformat())

        if self._audit_logger:
            await self._audit_logger.log_reset_applied(
                user_id=user_id,
                period_start=period_start,
                reset_day=settings.reset_day,
                correlation_id=correlation_id,
            )
        return True
