"""Tests for the storage layer: stores, retry policy and read cache."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from budgetflow.config import StoreSettings
from budgetflow.models.audit import AuditEventBuilder
from budgetflow.models.budget import CurrencyCode, LedgerEntry, SavingsGoal
from budgetflow.services.storage import (
    AUDIT_LOG,
    EXPENSES,
    RECURRING_RULES,
    SAVINGS_GOALS,
    ConflictError,
    DataStore,
    DataStoreAuditStorage,
    DuplicateError,
    Filter,
    InMemoryDataStore,
    NotFoundError,
    RetryingDataStore,
    RetryPolicy,
    StorageError,
    TransientStoreError,
    TTLCache,
)
from budgetflow.services.ledger import LedgerService
from budgetflow.services.storage.cache import freeze
from budgetflow.services.storage.google_sheets import (
    COLLECTION_COLUMNS,
    GoogleSheetsDataStore,
    _translate_error,
    to_cell,
)


def run(coro):
    return asyncio.run(coro)


class FlakyStore(DataStore):
    """Fails the first `failures` calls with `error`, then delegates."""

    def __init__(self, failures: int, error: Exception = None):
        self.inner = InMemoryDataStore()
        self.failures = failures
        self.error = error or TransientStoreError("network down")
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error

    async def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        self._maybe_fail()
        return await self.inner.query(collection, filters, order_by, descending, limit)

    async def insert(self, collection, row):
        self._maybe_fail()
        return await self.inner.insert(collection, row)

    async def update(self, collection, row_id, patch, expected=None):
        self._maybe_fail()
        return await self.inner.update(collection, row_id, patch, expected)

    async def delete(self, collection, row_id):
        self._maybe_fail()
        return await self.inner.delete(collection, row_id)


class SlowStore(InMemoryDataStore):
    async def query(self, *args, **kwargs):
        await asyncio.sleep(1)
        return []


class LandsThenStallsStore(InMemoryDataStore):
    """Writes succeed immediately, but the first call of each kind stalls before replying."""

    def __init__(self, stall: float = 0.2):
        super().__init__()
        self.stall = stall
        self.insert_calls = 0
        self.update_calls = 0

    async def insert(self, collection, row):
        self.insert_calls += 1
        stored = await super().insert(collection, row)
        if self.insert_calls == 1:
            await asyncio.sleep(self.stall)
        return stored

    async def update(self, collection, row_id, patch, expected=None):
        self.update_calls += 1
        stored = await super().update(collection, row_id, patch, expected)
        if self.update_calls == 1:
            await asyncio.sleep(self.stall)
        return stored


def fast_policy(**overrides):
    options = {"max_attempts": 3, "base_delay": 0, "max_delay": 0, "timeout": 1.0}
    options.update(overrides)
    return RetryPolicy(**options)


class TestFilter:
    """Tests for row predicates."""

    def test_eq(self):
        assert Filter.eq("user_id", "u1").matches({"user_id": "u1"})
        assert not Filter.eq("user_id", "u1").matches({"user_id": "u2"})

    def test_range_filters(self):
        row = {"date": date(2024, 3, 10)}
        assert Filter.gte("date", date(2024, 3, 10)).matches(row)
        assert Filter.lte("date", date(2024, 3, 10)).matches(row)
        assert not Filter.gte("date", date(2024, 3, 11)).matches(row)

    def test_range_filters_skip_missing_values(self):
        """Test that rows without the field never match a range filter."""
        assert not Filter.lte("date", date(2024, 3, 10)).matches({"date": None})
        assert not Filter.gte("date", date(2024, 3, 10)).matches({})


class TestInMemoryDataStore:
    """Tests for the in-memory backend."""

    def test_insert_generates_id(self):
        store = InMemoryDataStore()
        row = run(store.insert(EXPENSES, {"title": "Coffee"}))
        assert row["id"]
        assert store.rows(EXPENSES) == [row]

    def test_duplicate_id_rejected(self):
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"id": "a"}))
        with pytest.raises(DuplicateError):
            run(store.insert(EXPENSES, {"id": "a"}))

    def test_unique_idempotency_key(self):
        """Test the unique constraint that makes postings idempotent."""
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"idempotency_key": "fixed:u1:2024-03"}))
        with pytest.raises(DuplicateError):
            run(store.insert(EXPENSES, {"idempotency_key": "fixed:u1:2024-03"}))
        assert len(store.rows(EXPENSES)) == 1

    def test_missing_keys_are_not_unique(self):
        """Test that manual entries without a key never clash."""
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"idempotency_key": None}))
        run(store.insert(EXPENSES, {"idempotency_key": None}))
        assert len(store.rows(EXPENSES)) == 2

    def test_query_filters_orders_and_limits(self):
        store = InMemoryDataStore()
        for day in (5, 1, 20, 12):
            run(store.insert(EXPENSES, {"user_id": "u1", "date": date(2024, 3, day)}))
        run(store.insert(EXPENSES, {"user_id": "u2", "date": date(2024, 3, 2)}))

        rows = run(store.query(
            EXPENSES,
            [Filter.eq("user_id", "u1"), Filter.gte("date", date(2024, 3, 5))],
            order_by="date",
            descending=True,
            limit=2,
        ))
        assert [r["date"].day for r in rows] == [20, 12]

    def test_query_returns_copies(self):
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"id": "a", "title": "Coffee"}))
        rows = run(store.query(EXPENSES))
        rows[0]["title"] = "Changed"
        assert run(store.get(EXPENSES, "a"))["title"] == "Coffee"

    def test_update(self):
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"id": "a", "title": "Coffee", "amount": Decimal("3")}))
        updated = run(store.update(EXPENSES, "a", {"amount": Decimal("4")}))
        assert updated == {"id": "a", "title": "Coffee", "amount": Decimal("4")}

    def test_update_missing_row(self):
        with pytest.raises(NotFoundError):
            run(InMemoryDataStore().update(EXPENSES, "nope", {}))

    def test_conditional_update(self):
        """Test that an update guarded by expected values refuses a changed row."""
        store = InMemoryDataStore()
        run(store.insert(RECURRING_RULES, {"id": "r1", "next_due_date": date(2024, 1, 8)}))
        guard = [Filter.eq("next_due_date", date(2024, 1, 8))]

        run(store.update(RECURRING_RULES, "r1", {"next_due_date": date(2024, 1, 15)}, guard))
        with pytest.raises(ConflictError):
            run(store.update(RECURRING_RULES, "r1", {"next_due_date": date(2024, 1, 15)}, guard))
        assert run(store.get(RECURRING_RULES, "r1"))["next_due_date"] == date(2024, 1, 15)

    def test_update_cannot_steal_idempotency_key(self):
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"id": "a", "idempotency_key": "k1"}))
        run(store.insert(EXPENSES, {"id": "b", "idempotency_key": "k2"}))
        with pytest.raises(DuplicateError):
            run(store.update(EXPENSES, "b", {"idempotency_key": "k1"}))

    def test_delete(self):
        store = InMemoryDataStore()
        run(store.insert(EXPENSES, {"id": "a"}))
        assert run(store.delete(EXPENSES, "a")) is True
        assert run(store.delete(EXPENSES, "a")) is False


class TestRetryPolicy:
    """Tests for the uniform retry policy."""

    def test_retries_transient_errors(self):
        flaky = FlakyStore(failures=2)
        store = RetryingDataStore(flaky, fast_policy())
        run(store.insert(EXPENSES, {"id": "a"}))
        assert flaky.calls == 3
        assert len(flaky.inner.rows(EXPENSES)) == 1

    def test_gives_up_after_max_attempts(self):
        """Test that the last transient error is re-raised unchanged."""
        error = TransientStoreError("still down")
        flaky = FlakyStore(failures=10, error=error)
        store = RetryingDataStore(flaky, fast_policy(max_attempts=3))
        with pytest.raises(TransientStoreError) as exc_info:
            run(store.query(EXPENSES))
        assert exc_info.value is error
        assert flaky.calls == 3

    def test_does_not_retry_permanent_errors(self):
        flaky = FlakyStore(failures=1, error=StorageError("bad request"))
        store = RetryingDataStore(flaky, fast_policy())
        with pytest.raises(StorageError, match="bad request"):
            run(store.query(EXPENSES))
        assert flaky.calls == 1

    def test_does_not_retry_duplicates(self):
        """Test that a unique-constraint violation surfaces immediately."""
        flaky = FlakyStore(failures=0)
        store = RetryingDataStore(flaky, fast_policy())
        run(store.insert(EXPENSES, {"idempotency_key": "k"}))
        with pytest.raises(DuplicateError):
            run(store.insert(EXPENSES, {"idempotency_key": "k"}))
        assert flaky.calls == 2

    def test_timeout_counts_as_transient(self):
        store = RetryingDataStore(SlowStore(), fast_policy(max_attempts=2, timeout=0.01))
        with pytest.raises(TransientStoreError, match="timed out"):
            run(store.query(EXPENSES))

    def test_custom_retryable_predicate(self):
        flaky = FlakyStore(failures=1, error=StorageError("quota"))
        policy = fast_policy(retryable=lambda e: isinstance(e, StorageError))
        run(RetryingDataStore(flaky, policy).query(EXPENSES))
        assert flaky.calls == 2

    def test_from_settings(self):
        settings = StoreSettings(max_attempts=5, base_delay_seconds=0.5, max_delay_seconds=4, timeout_seconds=3)
        policy = RetryPolicy.from_settings(settings)
        assert (policy.max_attempts, policy.base_delay, policy.max_delay, policy.timeout) == (5, 0.5, 4, 3)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_write_survives_caller_cancellation(self):
        """Test that a started write completes even if the caller is cancelled."""

        class SlowInsertStore(InMemoryDataStore):
            async def insert(self, collection, row):
                await asyncio.sleep(0.05)
                return await super().insert(collection, row)

        inner = SlowInsertStore()
        store = RetryingDataStore(inner, fast_policy())

        async def scenario():
            task = asyncio.create_task(store.insert(EXPENSES, {"id": "a"}))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(0.1)

        run(scenario())
        assert len(inner.rows(EXPENSES)) == 1

    def test_insert_that_landed_before_timing_out_is_not_an_error(self):
        """Test that a retry colliding with its own earlier write returns that row."""
        inner = LandsThenStallsStore(stall=0.2)
        store = RetryingDataStore(inner, fast_policy(timeout=0.05))

        row = run(store.insert(EXPENSES, {"title": "Coffee", "idempotency_key": "k1"}))

        assert inner.insert_calls == 2
        assert inner.rows(EXPENSES) == [row]

    def test_insert_id_is_stable_across_retries(self):
        """Test that a row without an id is not written twice under two ids."""
        inner = LandsThenStallsStore(stall=0.2)
        store = RetryingDataStore(inner, fast_policy(timeout=0.05))

        run(store.insert(EXPENSES, {"title": "Coffee"}))

        assert len(inner.rows(EXPENSES)) == 1

    def test_retry_still_rejects_someone_elses_row(self):
        """Test that a retried insert colliding with a different row still fails."""

        class TimesOutThenCollides(InMemoryDataStore):
            calls = 0

            async def insert(self, collection, row):
                self.calls += 1
                if self.calls == 1:
                    await asyncio.sleep(0.2)
                return await super().insert(collection, row)

        inner = TimesOutThenCollides()
        run(inner.insert(EXPENSES, {"id": "other", "idempotency_key": "k1"}))
        inner.calls = 0
        store = RetryingDataStore(inner, fast_policy(timeout=0.05))

        with pytest.raises(DuplicateError):
            run(store.insert(EXPENSES, {"idempotency_key": "k1"}))
        assert len(inner.rows(EXPENSES)) == 1

    def test_conditional_update_that_landed_before_timing_out(self):
        inner = LandsThenStallsStore(stall=0.2)
        run(inner.insert(RECURRING_RULES, {"id": "r1", "next_due_date": date(2024, 1, 8)}))
        store = RetryingDataStore(inner, fast_policy(timeout=0.05))

        updated = run(store.update(
            RECURRING_RULES, "r1",
            {"next_due_date": date(2024, 1, 15)},
            [Filter.eq("next_due_date", date(2024, 1, 8))],
        ))

        assert inner.update_calls == 2
        assert updated["next_due_date"] == date(2024, 1, 15)

    def test_add_entry_survives_slow_acknowledgement(self, validator, cache_settings):
        """Test that the user sees success when the expense was saved on the first attempt."""
        inner = LandsThenStallsStore(stall=0.2)
        store = RetryingDataStore(inner, fast_policy(timeout=0.05))
        ledger = LedgerService(store, validator, cache_settings=cache_settings)

        entry = run(ledger.add_entry("u1", "Coffee", "3.50", "Food", date(2024, 3, 1)))

        rows = inner.rows(EXPENSES)
        assert len(rows) == 1
        assert rows[0]["id"] == str(entry.id)


class TestTTLCache:
    """Tests for the explicit read cache."""

    def test_expiry(self):
        now = [0.0]
        cache = TTLCache(10, clock=lambda: now[0])
        cache.set(("expenses", "u1"), [1])
        now[0] = 9.9
        assert cache.get(("expenses", "u1")) == [1]
        now[0] = 10.0
        assert cache.get(("expenses", "u1")) is None
        assert len(cache) == 0

    def test_invalidate_by_prefix(self):
        """Test that invalidation drops only the given user's entries."""
        cache = TTLCache(60)
        cache.set(("expenses", "u1", ()), 1)
        cache.set(("expenses", "u1", (("title", "x"),)), 2)
        cache.set(("expenses", "u2", ()), 3)
        assert cache.invalidate("expenses", "u1") == 2
        assert cache.get(("expenses", "u2", ())) == 3

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(0)
        cache.set(("k",), 1)
        assert cache.get(("k",)) is None

    def test_freeze_is_order_independent(self):
        assert freeze({"a": 1, "b": None}) == freeze({"b": None, "a": 1})
        assert freeze(None) == ()


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the sheets store."""

    def __init__(self, header):
        self.values = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.values]

    def append_row(self, values, value_input_option=None):
        self.values.append(list(values))

    def update(self, range_name, values, value_input_option=None):
        self.values[int(range_name[1:]) - 1] = list(values[0])

    def delete_rows(self, index):
        del self.values[index - 1]

    def col_values(self, col):
        return [row[col - 1] for row in self.values]


class FakeSheetsClient:
    def __init__(self):
        self.sheets = {}

    def get_worksheet(self, collection):
        if collection not in self.sheets:
            self.sheets[collection] = FakeWorksheet(COLLECTION_COLUMNS[collection])
        return self.sheets[collection]


class TestGoogleSheetsDataStore:
    """Tests for the Google Sheets backend against a fake worksheet."""

    def test_to_cell(self):
        assert to_cell(None) == ""
        assert to_cell(date(2024, 3, 1)) == "2024-03-01"
        assert to_cell(CurrencyCode.EUR) == "EUR"
        assert to_cell(Decimal("3.50")) == "3.50"
        assert to_cell(True) == "True"

    def test_entry_round_trip(self):
        """Test that an entry written as strings parses back into the model."""
        store = GoogleSheetsDataStore(FakeSheetsClient())
        entry = LedgerEntry(
            user_id="u1", title="Coffee", amount="3.5", category="Food",
            date=date(2024, 3, 1), idempotency_key="k1",
        )
        run(store.insert(EXPENSES, entry.to_row()))

        rows = run(store.query(EXPENSES, [Filter.eq("user_id", "u1")]))
        assert LedgerEntry.model_validate(rows[0]) == entry

    def test_goal_round_trip(self):
        store = GoogleSheetsDataStore(FakeSheetsClient())
        goal = SavingsGoal(user_id="u1", title="Holiday", target_amount="1500", target_date=date(2024, 8, 1))
        run(store.insert(SAVINGS_GOALS, goal.to_row()))

        rows = run(store.query(SAVINGS_GOALS, [Filter.eq("user_id", "u1")]))
        assert SavingsGoal.model_validate(rows[0]) == goal

    def test_conditional_update(self):
        store = GoogleSheetsDataStore(FakeSheetsClient())
        run(store.insert(RECURRING_RULES, {"id": "r1", "next_due_date": date(2024, 1, 8)}))
        guard = [Filter.eq("next_due_date", date(2024, 1, 8))]

        run(store.update(RECURRING_RULES, "r1", {"next_due_date": date(2024, 1, 15)}, guard))
        with pytest.raises(ConflictError):
            run(store.update(RECURRING_RULES, "r1", {"next_due_date": date(2024, 1, 22)}, guard))
        assert run(store.get(RECURRING_RULES, "r1"))["next_due_date"] == "2024-01-15"

    def test_unique_key_enforced(self):
        store = GoogleSheetsDataStore(FakeSheetsClient())
        run(store.insert(EXPENSES, {"user_id": "u1", "idempotency_key": "k1"}))
        with pytest.raises(DuplicateError):
            run(store.insert(EXPENSES, {"user_id": "u1", "idempotency_key": "k1"}))

    def test_date_range_and_boolean_filters(self):
        """Test that filters compare against cell strings."""
        store = GoogleSheetsDataStore(FakeSheetsClient())
        run(store.insert(RECURRING_RULES, {"id": "r1", "user_id": "u1", "is_active": True, "next_due_date": date(2024, 1, 1)}))
        run(store.insert(RECURRING_RULES, {"id": "r2", "user_id": "u1", "is_active": False, "next_due_date": date(2024, 1, 1)}))
        run(store.insert(RECURRING_RULES, {"id": "r3", "user_id": "u1", "is_active": True, "next_due_date": date(2024, 2, 1)}))

        rows = run(store.query(RECURRING_RULES, [
            Filter.eq("is_active", True),
            Filter.lte("next_due_date", date(2024, 1, 15)),
        ]))
        assert [r["id"] for r in rows] == ["r1"]

    def test_update_and_delete(self):
        client = FakeSheetsClient()
        store = GoogleSheetsDataStore(client)
        run(store.insert(EXPENSES, {"id": "a", "title": "Coffee"}))
        run(store.insert(EXPENSES, {"id": "b", "title": "Tea"}))

        updated = run(store.update(EXPENSES, "b", {"title": "Green tea"}))
        assert updated["title"] == "Green tea"
        assert run(store.get(EXPENSES, "b"))["title"] == "Green tea"

        assert run(store.delete(EXPENSES, "a")) is True
        assert run(store.delete(EXPENSES, "a")) is False
        assert [r["id"] for r in run(store.query(EXPENSES))] == ["b"]

    def test_update_missing_row(self):
        store = GoogleSheetsDataStore(FakeSheetsClient())
        with pytest.raises(NotFoundError):
            run(store.update(EXPENSES, "nope", {"title": "x"}))

    def test_translate_error(self):
        """Test that network failures become retryable errors."""
        assert isinstance(_translate_error(OSError("reset"), "query"), TransientStoreError)
        permanent = _translate_error(RuntimeError("boom"), "query")
        assert type(permanent) is StorageError
        assert permanent.cause.args == ("boom",)


class TestDataStoreAuditStorage:
    def test_appends_event_row(self):
        store = InMemoryDataStore()
        event = AuditEventBuilder.reconciliation_failed("u1", "reset", "boom")
        assert run(DataStoreAuditStorage(store).append_event(event)) is True
        rows = store.rows(AUDIT_LOG)
        assert rows[0]["id"] == str(event.event_id)
        assert rows[0]["event_type"] == "reconciliation_failed"
