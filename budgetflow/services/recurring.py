"""
Recurring Rule Service

Creates and maintains recurring rules. The frequency is checked when a
rule is created, so processing never encounters an unknown one.

The first due date is one frequency step after the start date: a
monthly rule started on Jan 15 is first posted on Feb 15.
"""

from datetime import date
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.clock import Clock, SystemClock
from budgetflow.config import CacheSettings, get_settings
from budgetflow.models.audit import AuditEventType
from budgetflow.models.budget import Frequency, RecurringRule
from budgetflow.reconciliation.recurrence import next_occurrence, parse_frequency
from budgetflow.services.storage import (
    RECURRING_RULES,
    DataStore,
    Filter,
    NotFoundError,
    TTLCache,
)
from budgetflow.validation import InputValidator


logger = structlog.get_logger(__name__)

CACHE_NAMESPACE = "rules"


class RecurringRuleService:
    """Repository for recurring rules."""

    def __init__(
        self,
        store: DataStore,
        validator: Optional[InputValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        cache: Optional[TTLCache] = None,
        cache_settings: Optional[CacheSettings] = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._validator = validator or InputValidator(clock=self._clock)
        self._audit_logger = audit_logger
        if cache is None:
            cache_settings = cache_settings or get_settings().cache
            cache = TTLCache(cache_settings.rules_ttl_seconds)
        self._cache = cache

    def invalidate_cache(self, user_id: str) -> None:
        self._cache.invalidate(CACHE_NAMESPACE, user_id)

    async def list_rules(
        self,
        user_id: str,
        active_only: bool = False,
        use_cache: bool = True,
    ) -> list[RecurringRule]:
        """Rules of a user ordered by next due date."""
        key = (CACHE_NAMESPACE, user_id, active_only)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        filters = [Filter.eq("user_id", user_id)]
        if active_only:
            filters.append(Filter.eq("is_active", True))

        rows = await self._store.query(RECURRING_RULES, filters, order_by="next_due_date")
        rules = [RecurringRule.model_validate(row) for row in rows]

        self._cache.set(key, rules)
        return list(rules)

    async def list_due_rules(self, user_id: str, today: date) -> list[RecurringRule]:
        """Active rules whose next due date is on or before `today`. Never cached."""
        rows = await self._store.query(
            RECURRING_RULES,
            [
                Filter.eq("user_id", user_id),
                Filter.eq("is_active", True),
                Filter.lte("next_due_date", today),
            ],
            order_by="next_due_date",
        )
        return [RecurringRule.model_validate(row) for row in rows]

    async def get_rule(self, user_id: str, rule_id: UUID) -> RecurringRule:
        """
        Raises:
            NotFoundError: If the rule doesn't exist or belongs to someone else
        """
        row = await self._store.get(RECURRING_RULES, str(rule_id))
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(f"Recurring rule {rule_id} not found")
        return RecurringRule.model_validate(row)

    async def create_rule(
        self,
        user_id: str,
        title: str,
        amount: Any,
        category: str,
        frequency: Union[str, Frequency],
        start_date: Optional[date] = None,
    ) -> RecurringRule:
        """
        Create a recurring rule.

        Raises:
            ConfigurationError: If the frequency is not weekly, monthly or yearly
            ValidationError: If title, amount or category are invalid
        """
        frequency = parse_frequency(frequency)
        start = start_date or self._clock.today()

        rule = self._validator.require(
            self._validator.check_rule({
                "user_id": user_id,
                "title": title,
                "amount": amount,
                "category": category,
                "frequency": frequency,
                "start_date": start,
                "anchor_day": start.day,
                "next_due_date": next_occurrence(start, frequency, start.day),
            }),
            "recurring rule",
        )

        await self._store.insert(RECURRING_RULES, rule.to_row())
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                AuditEventType.RULE_CREATED,
                user_id,
                rule.id,
                {
                    "frequency": rule.frequency.value,
                    "amount": str(rule.amount),
                    "next_due_date": rule.next_due_date.isoformat(),
                },
            )
        return rule

    async def advance_rule(
        self,
        rule: RecurringRule,
        generated_date: date,
        next_due: date,
    ) -> RecurringRule:
        """
        Record that the occurrence on `generated_date` was posted.

        The write only applies while the stored rule still has the due
        date this copy was read with, so an overlapping run that already
        moved it further can never be rolled back.

        Raises:
            ValueError: If the due date would not move forward
            ConflictError: If the stored rule has moved on since it was read
        """
        if next_due <= generated_date or next_due < rule.next_due_date:
            raise ValueError(
                f"Next due date {next_due} must move forward from {generated_date}"
            )

        await self._store.update(
            RECURRING_RULES,
            str(rule.id),
            {"last_generated_date": generated_date, "next_due_date": next_due},
            expected=[Filter.eq("next_due_date", rule.next_due_date)],
        )
        self.invalidate_cache(rule.user_id)
        logger.debug(
            "recurring_rule_advanced",
            rule_id=str(rule.id),
            last_generated_date=generated_date.isoformat(),
            next_due_date=next_due.isoformat(),
        )
        return rule.model_copy(update={
            "last_generated_date": generated_date,
            "next_due_date": next_due,
        })

    async def deactivate_rule(self, user_id: str, rule_id: UUID) -> RecurringRule:
        """Stop a rule from producing further entries."""
        rule = await self.get_rule(user_id, rule_id)
        await self._store.update(RECURRING_RULES, str(rule_id), {"is_active": False})
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                AuditEventType.RULE_DEACTIVATED, user_id, rule_id
            )
        return rule.model_copy(update={"is_active": False})

    async def delete_rule(self, user_id: str, rule_id: UUID) -> None:
        """
        Delete a rule. Entries it already produced stay in the ledger.

        Raises:
            NotFoundError: If the rule doesn't exist
        """
        await self.get_rule(user_id, rule_id)
        if not await self._store.delete(RECURRING_RULES, str(rule_id)):
            raise NotFoundError(f"Recurring rule {rule_id} not found")
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                AuditEventType.RULE_DELETED, user_id, rule_id
            )
