"""
Ledger Service

Reads and writes ledger entries (the expenses collection).

DESIGN DECISION: Explicit user actions validate first and raise on
failure; nothing reaches the store unless it passed validation.
Reconciliation posts go through `insert_materialized`, which lets
DuplicateError propagate so the caller can treat it as "already posted".

Reads are cached per user and filter set. Every mutation invalidates
the user's cached reads.
"""

from datetime import date
from typing import Any, Iterable, Optional
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.config import CacheSettings, get_settings
from budgetflow.models.audit import AuditEventType
from budgetflow.models.budget import LedgerEntry
from budgetflow.services.categorization import suggest_category
from budgetflow.services.storage import (
    EXPENSES,
    DataStore,
    Filter,
    NotFoundError,
    TTLCache,
)
from budgetflow.services.storage.cache import freeze
from budgetflow.validation import InputValidator


logger = structlog.get_logger(__name__)

CACHE_NAMESPACE = "expenses"


class LedgerService:
    """Repository for one user's ledger entries."""

    def __init__(
        self,
        store: DataStore,
        validator: Optional[InputValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[TTLCache] = None,
        cache_settings: Optional[CacheSettings] = None,
    ):
        self._store = store
        self._validator = validator or InputValidator()
        self._audit_logger = audit_logger
        if cache is None:
            cache_settings = cache_settings or get_settings().cache
            cache = TTLCache(cache_settings.expenses_ttl_seconds)
        self._cache = cache

    def invalidate_cache(self, user_id: str) -> None:
        self._cache.invalidate(CACHE_NAMESPACE, user_id)

    async def list_entries(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        title: Optional[str] = None,
        use_cache: bool = True,
    ) -> list[LedgerEntry]:
        """
        Entries of a user, newest first.

        Args:
            user_id: Owner of the entries
            date_from: Inclusive lower bound on the entry date
            date_to: Inclusive upper bound on the entry date
            title: Exact title match
            use_cache: Serve from the read cache when possible
        """
        criteria = {"date_from": date_from, "date_to": date_to, "title": title}
        key = (CACHE_NAMESPACE, user_id, freeze(criteria))

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        filters = [Filter.eq("user_id", user_id)]
        if date_from is not None:
            filters.append(Filter.gte("date", date_from))
        if date_to is not None:
            filters.append(Filter.lte("date", date_to))
        if title is not None:
            filters.append(Filter.eq("title", title))

        rows = await self._store.query(EXPENSES, filters, order_by="date", descending=True)
        entries = [LedgerEntry.model_validate(row) for row in rows]

        self._cache.set(key, entries)
        return list(entries)

    async def find_entries_by_title(
        self,
        user_id: str,
        title: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[LedgerEntry]:
        """Uncached lookup of entries with an exact title."""
        return await self.list_entries(
            user_id,
            date_from=date_from,
            date_to=date_to,
            title=title,
            use_cache=False,
        )

    async def get_entry(self, user_id: str, entry_id: UUID) -> LedgerEntry:
        """
        Raises:
            NotFoundError: If the entry doesn't exist or belongs to someone else
        """
        row = await self._store.get(EXPENSES, str(entry_id))
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(f"Expense {entry_id} not found")
        return LedgerEntry.model_validate(row)

    async def add_entry(
        self,
        user_id: str,
        title: str,
        amount: Any,
        category: Optional[str],
        entry_date: date,
        is_recurring: bool = False,
    ) -> LedgerEntry:
        """
        Create an expense on behalf of the user.

        A missing category is suggested from the title.

        Raises:
            ValidationError: Before any store call if the input is invalid
        """
        if not category:
            category = suggest_category(title)
            logger.debug("category_suggested", user_id=user_id, category=category.value)

        entry = self._validator.require(
            self._validator.check_entry({
                "user_id": user_id,
                "title": title,
                "amount": amount,
                "category": category,
                "date": entry_date,
                "is_recurring": is_recurring,
            }),
            "expense",
        )

        await self._store.insert(EXPENSES, entry.to_row())
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                AuditEventType.ENTRY_CREATED,
                user_id,
                entry.id,
                {"amount": str(entry.amount), "date": entry.entry_date.isoformat()},
            )
        return entry

    async def insert_materialized(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Insert an entry produced by reconciliation.

        Raises:
            DuplicateError: If an entry with the same idempotency key exists
        """
        await self._store.insert(EXPENSES, entry.to_row())
        self.invalidate_cache(entry.user_id)
        logger.info(
            "ledger_entry_materialized",
            user_id=entry.user_id,
            entry_id=str(entry.id),
            idempotency_key=entry.idempotency_key,
        )
        return entry

    async def update_entry(self, user_id: str, entry_id: UUID, **changes: Any) -> LedgerEntry:
        """
        Apply `changes` (title, amount, category, date) to an entry.

        Raises:
            NotFoundError: If the entry doesn't exist
            ValidationError: If the merged entry is invalid
        """
        if "entry_date" in changes:
            changes["date"] = changes.pop("entry_date")
        for protected in ("id", "user_id", "idempotency_key", "created_at"):
            changes.pop(protected, None)

        current = await self.get_entry(user_id, entry_id)
        merged = {**current.to_row(), **changes}
        updated = self._validator.require(self._validator.check_entry(merged), "expense")

        new_row = updated.to_row()
        patch = {field: new_row[field] for field in changes if field in new_row}
        await self._store.update(EXPENSES, str(entry_id), patch)
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                AuditEventType.ENTRY_UPDATED,
                user_id,
                updated.id,
                {"fields": sorted(patch)},
            )
        return updated

    async def delete_entry(self, user_id: str, entry_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the entry doesn't exist
        """
        await self.get_entry(user_id, entry_id)
        if not await self._store.delete(EXPENSES, str(entry_id)):
            raise NotFoundError(f"Expense {entry_id} not found")
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                AuditEventType.ENTRY_DELETED, user_id, entry_id
            )

    async def delete_entries(self, user_id: str, entry_ids: Iterable[UUID]) -> int:
        """
        Delete several entries. Ids that don't exist are skipped.

        Returns the number of entries deleted.
        """
        deleted = 0
        for entry_id in entry_ids:
            try:
                await self.delete_entry(user_id, entry_id)
            except NotFoundError:
                logger.info("ledger_entry_already_gone", user_id=user_id, entry_id=str(entry_id))
                continue
            deleted += 1
        return deleted
