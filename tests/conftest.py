"""
Shared fixtures.

Everything runs against the in-memory store and a fixed clock;
no test touches the network.
"""

from datetime import date

import pytest

from budgetflow.audit import AuditLogger
from budgetflow.clock import FixedClock
from budgetflow.config import AppSettings, CacheSettings
from budgetflow.reconciliation.due_rules import DueRuleProcessor
from budgetflow.reconciliation.fixed_expense import FixedExpenseInjector
from budgetflow.reconciliation.reset import ResetTracker
from budgetflow.services.ledger import LedgerService
from budgetflow.services.profile import ProfileService
from budgetflow.services.recurring import RecurringRuleService
from budgetflow.services.savings import SavingsGoalService
from budgetflow.services.storage import (
    DataStoreAuditStorage,
    InMemoryDataStore,
    RetryingDataStore,
    RetryPolicy,
)
from budgetflow.validation import InputValidator


USER_ID = "user-1"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def clock():
    return FixedClock(date(2024, 3, 10))


@pytest.fixture
def app_settings():
    return AppSettings(_env_file=None)


@pytest.fixture
def cache_settings():
    return CacheSettings(
        expenses_ttl_seconds=300,
        profile_ttl_seconds=600,
        rules_ttl_seconds=300,
    )


@pytest.fixture
def memory_store():
    return InMemoryDataStore()


@pytest.fixture
def store(memory_store):
    """The in-memory store behind a retry policy that never sleeps."""
    policy = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, timeout=1.0)
    return RetryingDataStore(memory_store, policy)


@pytest.fixture
def audit_logger(store):
    return AuditLogger(DataStoreAuditStorage(store))


@pytest.fixture
def validator(app_settings, clock):
    return InputValidator(app_settings, clock)


@pytest.fixture
def ledger(store, validator, audit_logger, cache_settings):
    return LedgerService(store, validator, audit_logger, cache_settings=cache_settings)


@pytest.fixture
def profiles(store, validator, audit_logger, cache_settings):
    return ProfileService(store, validator, audit_logger, cache_settings=cache_settings)


@pytest.fixture
def rules(store, validator, audit_logger, clock, cache_settings):
    return RecurringRuleService(store, validator, audit_logger, clock, cache_settings=cache_settings)


@pytest.fixture
def savings(store, validator, audit_logger, cache_settings):
    return SavingsGoalService(store, validator, audit_logger, cache_settings=cache_settings)


@pytest.fixture
def due_rule_processor(rules, ledger, audit_logger, app_settings):
    return DueRuleProcessor(rules, ledger, audit_logger, app_settings)


@pytest.fixture
def fixed_expense_injector(ledger, audit_logger, app_settings):
    return FixedExpenseInjector(ledger, audit_logger, app_settings)


@pytest.fixture
def reset_tracker(profiles, audit_logger):
    return ResetTracker(profiles, audit_logger)
