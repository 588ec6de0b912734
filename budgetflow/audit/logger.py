"""
Audit Logger

DESIGN DECISION: Every posting made on the user's behalf is logged.
This provides:
1. Traceability of automatically created ledger entries
2. Debugging capability for background reconciliation
3. A history the user can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace one reconciliation run
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budgetflow.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from budgetflow.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit collection of the data store (when configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("budgetflow.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_reset_applied(
        self,
        user_id: str,
        period_start: date,
        reset_day: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the start of a new budget period."""
        event = AuditEventBuilder.reset_applied(
            user_id=user_id,
            period_start=period_start,
            reset_day=reset_day,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rule_materialized(
        self,
        user_id: str,
        rule_id: UUID,
        entry_id: UUID,
        due_date: date,
        next_due_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log one recurring occurrence posted to the ledger."""
        event = AuditEventBuilder.rule_materialized(
            user_id=user_id,
            rule_id=rule_id,
            entry_id=entry_id,
            due_date=due_date,
            next_due_date=next_due_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_duplicate_skipped(
        self,
        user_id: str,
        idempotency_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.duplicate_posting_skipped(
            user_id=user_id,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_fixed_expense_posted(
        self,
        user_id: str,
        entry_id: UUID,
        amount: str,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.fixed_expense_posted(
            user_id=user_id,
            entry_id=entry_id,
            amount=amount,
            month=month,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entry_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        entry_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Log a user-initiated ledger change."""
        await self.log(AuditEventBuilder.entry_changed(event_type, user_id, entry_id, details))

    async def log_rule_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        rule_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rule_changed(event_type, user_id, rule_id, details))

    async def log_goal_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        goal_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_changed(event_type, user_id, goal_id, details))

    async def log_profile_updated(self, user_id: str, fields: list[str]) -> None:
        await self.log(AuditEventBuilder.profile_updated(user_id, fields))

    async def log_reconciliation_failed(
        self,
        user_id: str,
        step: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a background step that failed; the user is not alerted."""
        event = AuditEventBuilder.reconciliation_failed(
            user_id=user_id,
            step=step,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a reconciliation run and pass it
    through all subsequent operations.
    """
    return uuid4()
