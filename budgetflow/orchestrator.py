"""
Main Orchestrator for BudgetFlow

This module ties together all the components and defines the
end-to-end flows for:
1. On-load reconciliation (reset → due rules → fixed expenses)
2. Budget overview (current period, its entries and totals)

DESIGN DECISION: Background reconciliation never interrupts the user.
Each step is isolated: a failing step is logged, audited and recorded
on the report, and the remaining steps still run. Explicit user
actions (adding an expense, editing the profile) go straight to the
services and raise.
"""

from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger, create_correlation_id
from budgetflow.clock import Clock, SystemClock
from budgetflow.config import get_settings
from budgetflow.errors import BudgetFlowError
from budgetflow.models.budget import (
    BudgetSettings,
    PeriodSummary,
    ReconciliationReport,
)
from budgetflow.reconciliation.due_rules import DueRuleProcessor
from budgetflow.reconciliation.fixed_expense import FixedExpenseInjector
from budgetflow.reconciliation.periods import compute_period, filter_by_period
from budgetflow.reconciliation.reset import ResetTracker
from budgetflow.services.ledger import LedgerService
from budgetflow.services.profile import ProfileService
from budgetflow.services.recurring import RecurringRuleService
from budgetflow.services.savings import SavingsGoalService
from budgetflow.services.storage import (
    DataStore,
    DataStoreAuditStorage,
    InMemoryDataStore,
    RetryingDataStore,
    RetryPolicy,
)
from budgetflow.validation import InputValidator


T = TypeVar("T")

logger = structlog.get_logger(__name__)


class ReconciliationFlow:
    """
    Orchestrates reconciliation when a user opens the app.

    Flow:
    1. Read settings → defaults if missing or unreadable
    2. Reset Tracker → start a new budget period if due
    3. Due-Rule Processor → post recurring expenses that came due
    4. Fixed-Expense Injector → post this month's fixed expenses

    Steps run in this order so that fixed expenses and recurring
    postings land after the period boundary has moved.
    """

    def __init__(
        self,
        profiles: ProfileService,
        rules: RecurringRuleService,
        ledger: LedgerService,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
        reset_tracker: Optional[ResetTracker] = None,
        due_rule_processor: Optional[DueRuleProcessor] = None,
        fixed_expense_injector: Optional[FixedExpenseInjector] = None,
    ):
        self._profiles = profiles
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger
        self._reset_tracker = reset_tracker or ResetTracker(profiles, audit_logger)
        self._due_rule_processor = due_rule_processor or DueRuleProcessor(rules, ledger, audit_logger)
        self._fixed_expense_injector = fixed_expense_injector or FixedExpenseInjector(ledger, audit_logger)

    async def _run_step(
        self,
        report: ReconciliationReport,
        step: str,
        operation: Callable[[], Awaitable[T]],
        default: T,
        correlation_id: UUID,
    ) -> T:
        try:
            return await operation()
        except (BudgetFlowError, ValueError) as e:
            # ValueError covers stored rows that no longer parse
            report.errors.append(f"{step}: {e}")
            logger.error(
                "reconciliation_step_failed",
                user_id=report.user_id,
                step=step,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self._audit_logger:
                await self._audit_logger.log_reconciliation_failed(
                    user_id=report.user_id,
                    step=step,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return default

    async def run_on_load(self, user_id: str) -> ReconciliationReport:
        """
        Run every reconciliation step for a user.

        Never raises for store or data problems; see report.errors.
        """
        correlation_id = create_correlation_id()
        today = self._clock.today()
        report = ReconciliationReport(user_id=user_id, run_date=today)

        settings = await self._run_step(
            report,
            "load_settings",
            lambda: self._profiles.get_settings(user_id, use_cache=False),
            BudgetSettings.defaults(user_id),
            correlation_id,
        )

        report.reset_performed = await self._run_step(
            report,
            "reset",
            lambda: self._reset_tracker.check_and_process_reset(
                user_id, settings, today, correlation_id
            ),
            False,
            correlation_id,
        )

        report.rules_processed = await self._run_step(
            report,
            "due_rules",
            lambda: self._due_rule_processor.process_due_rules(user_id, today, correlation_id),
            0,
            correlation_id,
        )

        report.fixed_expense_posted = await self._run_step(
            report,
            "fixed_expense",
            lambda: self._fixed_expense_injector.ensure_fixed_expense_posted(
                user_id, settings.fixed_expense_amount, today, correlation_id
            ),
            False,
            correlation_id,
        )

        logger.info(
            "reconciliation_completed",
            user_id=user_id,
            correlation_id=str(correlation_id),
            reset_performed=report.reset_performed,
            rules_processed=report.rules_processed,
            fixed_expense_posted=report.fixed_expense_posted,
            errors=len(report.errors),
        )
        return report


class BudgetOverviewFlow:
    """
    Answers "how am I doing this period?".

    The period comes from the user's reset settings and today's date;
    entries are fetched for the period and totalled.
    """

    def __init__(
        self,
        profiles: ProfileService,
        ledger: LedgerService,
        clock: Optional[Clock] = None,
    ):
        self._profiles = profiles
        self._ledger = ledger
        self._clock = clock or SystemClock()

    async def current_period(self, user_id: str) -> PeriodSummary:
        settings = await self._profiles.get_settings(user_id)
        period = compute_period(self._clock.today(), settings.reset_day, settings.reset_enabled)

        entries = await self._ledger.list_entries(
            user_id, date_from=period.period_start, date_to=period.period_end
        )
        entries = filter_by_period(entries, period)

        return PeriodSummary(
            user_id=user_id,
            period=period,
            entries=entries,
            total_spent=sum((entry.amount for entry in entries), Decimal("0")),
            monthly_income=settings.monthly_income,
            currency=settings.currency,
        )


class AppComponents:
    """Everything the UI layer needs, wired to one store."""

    def __init__(
        self,
        store: DataStore,
        clock: Clock,
        audit_logger: AuditLogger,
        ledger: LedgerService,
        profiles: ProfileService,
        rules: RecurringRuleService,
        savings: SavingsGoalService,
    ):
        self.store = store
        self.clock = clock
        self.audit_logger = audit_logger
        self.ledger = ledger
        self.profiles = profiles
        self.rules = rules
        self.savings = savings
        self.reconciliation = ReconciliationFlow(profiles, rules, ledger, clock, audit_logger)
        self.overview = BudgetOverviewFlow(profiles, ledger, clock)


def create_app_components(
    use_sheets: bool = True,
    clock: Optional[Clock] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_sheets: Whether to use Google Sheets storage.
                    Falls back to the in-memory store when Sheets
                    isn't configured, or when False (testing).
        clock: Source of "today"; the system clock by default
    """
    settings = get_settings()
    clock = clock or SystemClock()

    backend: Optional[DataStore] = None
    if use_sheets:
        try:
            # Imported here so gspread is only needed when Sheets is used
            from budgetflow.services.storage.google_sheets import GoogleSheetsDataStore

            backend = GoogleSheetsDataStore()
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("sheets_storage_unavailable", error=str(e))
            backend = None

    if backend is None:
        backend = InMemoryDataStore()

    store = RetryingDataStore(backend, RetryPolicy.from_settings(settings.store))
    audit_logger = AuditLogger(DataStoreAuditStorage(store))
    validator = InputValidator(settings.app, clock)
    cache_settings = settings.cache

    ledger = LedgerService(store, validator, audit_logger, cache_settings=cache_settings)
    profiles = ProfileService(store, validator, audit_logger, cache_settings=cache_settings)
    rules = RecurringRuleService(store, validator, audit_logger, clock, cache_settings=cache_settings)
    savings = SavingsGoalService(store, validator, audit_logger, cache_settings=cache_settings)

    return AppComponents(store, clock, audit_logger, ledger, profiles, rules, savings)
