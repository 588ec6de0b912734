"""
Audit Models for BudgetFlow

Every posting the system makes on the user's behalf is logged.
This provides:
1. Traceability of automatically created ledger entries
2. Debugging information when a background step fails
3. A way to explain "where did this expense come from?"

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Budget periods
    RESET_APPLIED = "reset_applied"

    # Recurring rules
    RULE_CREATED = "rule_created"
    RULE_DEACTIVATED = "rule_deactivated"
    RULE_DELETED = "rule_deleted"
    RULE_MATERIALIZED = "rule_materialized"
    DUPLICATE_POSTING_SKIPPED = "duplicate_posting_skipped"

    # Fixed expenses
    FIXED_EXPENSE_POSTED = "fixed_expense_posted"

    # Ledger
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"

    # Profile
    PROFILE_UPDATED = "profile_updated"

    # Savings goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"

    # System events
    RECONCILIATION_FAILED = "reconciliation_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data and which record?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected records"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'rule', 'profile')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one reconciliation run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> dict:
        """Flat row for the audit collection; details are JSON-encoded."""
        row = self.to_log_dict()
        row["id"] = row.pop("event_id")
        row["details"] = json.dumps(self.details, default=str) if self.details else ""
        return row


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.rule_materialized(user_id, rule_id, ...)
        event = AuditEventBuilder.reset_applied(user_id, period_start, ...)
    """

    @staticmethod
    def reset_applied(
        user_id: str,
        period_start: date,
        reset_day: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESET_APPLIED,
            user_id=user_id,
            entity_type="profile",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Budget period reset, new period starts {period_start.isoformat()}",
            details={
                "period_start": period_start.isoformat(),
                "reset_day": reset_day,
            },
        )

    @staticmethod
    def rule_materialized(
        user_id: str,
        rule_id: UUID,
        entry_id: UUID,
        due_date: date,
        next_due_date: date,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_MATERIALIZED,
            user_id=user_id,
            entity_type="rule",
            entity_id=str(rule_id),
            correlation_id=correlation_id,
            description=f"Recurring expense posted for {due_date.isoformat()}",
            details={
                "entry_id": str(entry_id),
                "due_date": due_date.isoformat(),
                "next_due_date": next_due_date.isoformat(),
            },
        )

    @staticmethod
    def duplicate_posting_skipped(
        user_id: str,
        idempotency_key: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_POSTING_SKIPPED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="entry",
            correlation_id=correlation_id,
            description="Posting already present, skipped duplicate",
            details={
                "idempotency_key": idempotency_key,
            },
        )

    @staticmethod
    def fixed_expense_posted(
        user_id: str,
        entry_id: UUID,
        amount: str,
        month: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FIXED_EXPENSE_POSTED,
            user_id=user_id,
            entity_type="entry",
            entity_id=str(entry_id),
            correlation_id=correlation_id,
            description=f"Monthly fixed expenses posted for {month}",
            details={
                "amount": amount,
                "month": month,
            },
        )

    @staticmethod
    def entry_changed(
        event_type: AuditEventType,
        user_id: str,
        entry_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.ENTRY_CREATED: "created",
            AuditEventType.ENTRY_UPDATED: "updated",
            AuditEventType.ENTRY_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="entry",
            entity_id=str(entry_id),
            description=f"Expense {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def rule_changed(
        event_type: AuditEventType,
        user_id: str,
        rule_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.RULE_CREATED: "created",
            AuditEventType.RULE_DEACTIVATED: "stopped",
            AuditEventType.RULE_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="rule",
            entity_id=str(rule_id),
            description=f"Recurring expense {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def goal_changed(
        event_type: AuditEventType,
        user_id: str,
        goal_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.GOAL_CREATED: "created",
            AuditEventType.GOAL_UPDATED: "updated",
            AuditEventType.GOAL_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="goal",
            entity_id=str(goal_id),
            description=f"Savings goal {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def profile_updated(
        user_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_UPDATED,
            user_id=user_id,
            entity_type="profile",
            entity_id=user_id,
            description="Budget settings updated",
            details={"fields": sorted(fields)},
            is_user_action=True,
        )

    @staticmethod
    def reconciliation_failed(
        user_id: str,
        step: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Background reconciliation step failed: {step}",
            error_message=error_message,
            details={
                "step": step,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
