"""
Due-Rule Processor

Materializes due occurrences of recurring rules into the ledger.

DESIGN DECISION: Posting the entry and advancing the rule are two
separate store writes with no transaction between them. Every posted
entry carries the idempotency key rule:<rule_id>:<due_date>, so a run
that failed between the two writes can simply be repeated: the store
refuses the second entry with DuplicateError, which we treat as
"already posted", and the rule is advanced as usual.

A rule that missed several due dates (the app wasn't opened for a
while) is caught up in one run, one entry per missed date, bounded by
the configured catch-up limit. Rules are processed one at a time.

Two overlapping runs (a double page load) race on the same rules. The
idempotency key keeps entries unique, and advancing a rule is a
conditional write on its current due date: the run that loses the race
gets ConflictError and leaves the rule to the winner.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.config import AppSettings, get_settings
from budgetflow.models.budget import LedgerEntry, RecurringRule
from budgetflow.reconciliation.recurrence import next_occurrence, occurrences_through
from budgetflow.services.ledger import LedgerService
from budgetflow.services.recurring import RecurringRuleService
from budgetflow.services.storage import ConflictError, DuplicateError


logger = structlog.get_logger(__name__)


class DueRuleProcessor:
    """Posts every due occurrence of a user's active rules."""

    def __init__(
        self,
        rules: RecurringRuleService,
        ledger: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._rules = rules
        self._ledger = ledger
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    async def process_due_rules(
        self,
        user_id: str,
        today: date,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Materialize all rules due on or before `today`.

        Returns:
            Number of rules processed. A second run on the same day
            finds nothing due and returns 0.

        Raises:
            StorageError: If a store call fails after retries; rules
                processed before the failure keep their progress
        """
        due_rules = await self._rules.list_due_rules(user_id, today)
        if not due_rules:
            return 0

        logger.info("due_rules_found", user_id=user_id, count=len(due_rules), today=today.isoformat())

        processed = 0
        for rule in due_rules:
            await self._process_rule(rule, today, correlation_id)
            processed += 1

        return processed

    async def _process_rule(
        self,
        rule: RecurringRule,
        today: date,
        correlation_id: Optional[UUID],
    ) -> RecurringRule:
        limit = self._settings.max_catchup_occurrences
        due_dates = occurrences_through(
            rule.next_due_date, today, rule.frequency, rule.anchor_day, limit=limit
        )

        for due_date in due_dates:
            next_due = next_occurrence(due_date, rule.frequency, rule.anchor_day)
            entry = LedgerEntry(
                user_id=rule.user_id,
                title=rule.title,
                amount=rule.amount,
                category=rule.category,
                entry_date=due_date,
                is_recurring=True,
                idempotency_key=rule.occurrence_key(due_date),
            )

            posted = await self._post(entry, correlation_id)
            try:
                advanced = await self._rules.advance_rule(rule, due_date, next_due)
            except ConflictError:
                advanced = None

            if posted and self._audit_logger:
                await self._audit_logger.log_rule_materialized(
                    user_id=rule.user_id,
                    rule_id=rule.id,
                    entry_id=entry.id,
                    due_date=due_date,
                    next_due_date=next_due,
                    correlation_id=correlation_id,
                )

            if advanced is None:
                logger.info(
                    "rule_advanced_concurrently",
                    rule_id=str(rule.id),
                    due_date=due_date.isoformat(),
                )
                return rule
            rule = advanced

        if rule.next_due_date <= today:
            logger.warning(
                "catchup_limit_reached",
                rule_id=str(rule.id),
                limit=limit,
                next_due_date=rule.next_due_date.isoformat(),
            )
        return rule

    async def _post(self, entry: LedgerEntry, correlation_id: Optional[UUID]) -> bool:
        """Insert the entry; False if it was already posted."""
        try:
            await self._ledger.insert_materialized(entry)
        except DuplicateError:
            logger.info("occurrence_already_posted", idempotency_key=entry.idempotency_key)
            if self._audit_logger:
                await self._audit_logger.log_duplicate_skipped(
                    user_id=entry.user_id,
                    idempotency_key=entry.idempotency_key,
                    correlation_id=correlation_id,
                )
            return False
        return True
