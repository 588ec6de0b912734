"""Integration tests for the on-load reconciliation and overview flows."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from budgetflow.clock import FixedClock
from budgetflow.models.budget import RecurringRule
from budgetflow.orchestrator import (
    AppComponents,
    BudgetOverviewFlow,
    ReconciliationFlow,
    create_app_components,
)
from budgetflow.services.storage import (
    AUDIT_LOG,
    EXPENSES,
    RECURRING_RULES,
    InMemoryDataStore,
    StorageError,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def flow(profiles, rules, ledger, clock, audit_logger, reset_tracker, due_rule_processor, fixed_expense_injector):
    return ReconciliationFlow(
        profiles,
        rules,
        ledger,
        clock,
        audit_logger,
        reset_tracker=reset_tracker,
        due_rule_processor=due_rule_processor,
        fixed_expense_injector=fixed_expense_injector,
    )


class TestReconciliationFlow:
    """Tests for ReconciliationFlow.run_on_load."""

    def test_full_run(self, flow, profiles, rules, clock, memory_store, user_id):
        """Test reset, due rule and fixed expense in one run."""
        run(profiles.update_profile(user_id, reset_enabled=True, reset_day=5, fixed_expense_amount="500"))
        run(rules.create_rule(user_id, "Gym", "30", "Health", "weekly", date(2024, 3, 1)))

        report = run(flow.run_on_load(user_id))

        assert report.succeeded
        assert report.run_date == clock.today()
        assert report.reset_performed is True
        assert report.rules_processed == 1
        assert report.fixed_expense_posted is True

        titles = sorted(row["title"] for row in memory_store.rows(EXPENSES))
        assert titles == ["Gym", "Monthly Fixed Expenses"]

    def test_second_run_is_a_noop(self, flow, profiles, rules, memory_store, user_id):
        """Test that reopening the app the same day posts nothing new."""
        run(profiles.update_profile(user_id, reset_enabled=True, reset_day=5, fixed_expense_amount="500"))
        run(rules.create_rule(user_id, "Gym", "30", "Health", "weekly", date(2024, 3, 1)))
        run(flow.run_on_load(user_id))

        report = run(flow.run_on_load(user_id))

        assert report.succeeded
        assert report.reset_performed is False
        assert report.rules_processed == 0
        assert report.fixed_expense_posted is False
        assert len(memory_store.rows(EXPENSES)) == 2

    def test_new_user_gets_defaults(self, flow, user_id):
        report = run(flow.run_on_load(user_id))
        assert report.succeeded
        assert (report.reset_performed, report.rules_processed, report.fixed_expense_posted) == (False, 0, False)

    def test_failing_step_does_not_stop_the_others(self, flow, profiles, memory_store, user_id):
        """Test that a broken rule row is reported while other steps run."""
        run(profiles.update_profile(user_id, fixed_expense_amount="500"))
        run(memory_store.insert(RECURRING_RULES, {
            "id": "broken",
            "user_id": user_id,
            "is_active": True,
            "next_due_date": date(2024, 3, 1),
            "frequency": "fortnightly",
        }))

        report = run(flow.run_on_load(user_id))

        assert not report.succeeded
        assert report.errors[0].startswith("due_rules:")
        assert report.rules_processed == 0
        assert report.fixed_expense_posted is True
        failures = [e for e in memory_store.rows(AUDIT_LOG) if e["event_type"] == "reconciliation_failed"]
        assert len(failures) == 1

    def test_storage_failure_is_recorded(self, profiles, rules, ledger, clock, user_id):
        class BrokenProcessor:
            async def process_due_rules(self, user_id, today, correlation_id=None):
                raise StorageError("sheet unavailable")

        flow = ReconciliationFlow(profiles, rules, ledger, clock, due_rule_processor=BrokenProcessor())
        report = run(flow.run_on_load(user_id))
        assert report.errors == ["due_rules: sheet unavailable"]


    def test_next_month_posts_again(self, flow, profiles, clock, memory_store, user_id):
        """Test that the fixed expense is posted again once the month changes."""
        run(profiles.update_profile(user_id, fixed_expense_amount="500"))
        run(flow.run_on_load(user_id))

        clock.advance_to(date(2024, 4, 2))
        report = run(flow.run_on_load(user_id))

        assert report.fixed_expense_posted is True
        dates = sorted(row["date"] for row in memory_store.rows(EXPENSES))
        assert dates == [date(2024, 3, 10), date(2024, 4, 2)]


class TestBudgetOverviewFlow:
    """Tests for BudgetOverviewFlow.current_period."""

    def test_current_period_with_reset_day(self, profiles, ledger, clock, user_id):
        run(profiles.update_profile(user_id, reset_enabled=True, reset_day=15, monthly_income="2000"))
        run(ledger.add_entry(user_id, "Before", "10", "Food", date(2024, 2, 14)))
        run(ledger.add_entry(user_id, "First", "20", "Food", date(2024, 2, 15)))
        run(ledger.add_entry(user_id, "Last", "30.50", "Food", date(2024, 3, 10)))

        summary = run(BudgetOverviewFlow(profiles, ledger, clock).current_period(user_id))

        assert summary.period.period_start == date(2024, 2, 15)
        assert summary.period.period_end == date(2024, 3, 14)
        assert sorted(e.title for e in summary.entries) == ["First", "Last"]
        assert summary.total_spent == Decimal("50.50")
        assert summary.remaining_budget == Decimal("1949.50")

    def test_calendar_month_by_default(self, profiles, ledger, clock, user_id):
        run(ledger.add_entry(user_id, "Feb", "10", "Food", date(2024, 2, 29)))
        run(ledger.add_entry(user_id, "Mar", "10", "Food", date(2024, 3, 1)))

        summary = run(BudgetOverviewFlow(profiles, ledger, clock).current_period(user_id))

        assert summary.period.period_start == date(2024, 3, 1)
        assert [e.title for e in summary.entries] == ["Mar"]


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_in_memory_wiring(self):
        clock = FixedClock(date(2024, 3, 10))
        components = create_app_components(use_sheets=False, clock=clock)

        assert isinstance(components, AppComponents)
        assert isinstance(components.store.inner, InMemoryDataStore)
        assert components.clock is clock

        rule = run(components.rules.create_rule("u1", "Gym", "30", "Health", "weekly", date(2024, 3, 1)))
        assert isinstance(rule, RecurringRule)
        report = run(components.reconciliation.run_on_load("u1"))
        assert report.rules_processed == 1

        goal = run(components.savings.create_goal("u1", "Bike", "300"))
        assert run(components.savings.list_goals("u1")) == [goal]
