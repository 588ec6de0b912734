"""
Savings Goal Service

Creates and maintains a user's savings goals. Goals are independent of
the ledger: a deposit raises the goal's current amount and posts no
expense.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.config import CacheSettings, get_settings
from budgetflow.errors import ValidationError
from budgetflow.models.audit import AuditEventType
from budgetflow.models.budget import SavingsGoal, parse_amount
from budgetflow.services.storage import (
    SAVINGS_GOALS,
    DataStore,
    Filter,
    NotFoundError,
    TTLCache,
)
from budgetflow.validation import InputValidator


logger = structlog.get_logger(__name__)

CACHE_NAMESPACE = "goals"

# Fields the user may change after creation
EDITABLE_FIELDS = frozenset({"title", "target_amount", "current_amount", "target_date", "color"})


class SavingsGoalService:
    """Repository for savings goals."""

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
            cache = TTLCache(cache_settings.goals_ttl_seconds)
        self._cache = cache

    def invalidate_cache(self, user_id: str) -> None:
        self._cache.invalidate(CACHE_NAMESPACE, user_id)

    async def list_goals(self, user_id: str, use_cache: bool = True) -> list[SavingsGoal]:
        """Goals of a user, newest first."""
        key = (CACHE_NAMESPACE, user_id)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        rows = await self._store.query(
            SAVINGS_GOALS,
            [Filter.eq("user_id", user_id)],
            order_by="created_at",
            descending=True,
        )
        goals = [SavingsGoal.model_validate(row) for row in rows]

        self._cache.set(key, goals)
        return list(goals)

    async def get_goal(self, user_id: str, goal_id: UUID) -> SavingsGoal:
        """
        Raises:
            NotFoundError: If the goal doesn't exist or belongs to someone else
        """
        row = await self._store.get(SAVINGS_GOALS, str(goal_id))
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(f"Savings goal {goal_id} not found")
        return SavingsGoal.model_validate(row)

    async def create_goal(
        self,
        user_id: str,
        title: str,
        target_amount: Any,
        current_amount: Any = "0",
        target_date: Optional[date] = None,
        color: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Create a savings goal.

        Raises:
            ValidationError: Before any store call if the input is invalid
        """
        data = {
            "user_id": user_id,
            "title": title,
            "target_amount": target_amount,
            "current_amount": current_amount,
            "target_date": target_date,
        }
        if color:
            data["color"] = color

        goal = self._validator.require(self._validator.check_goal(data), "savings goal")

        await self._store.insert(SAVINGS_GOALS, goal.to_row())
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_goal_changed(
                AuditEventType.GOAL_CREATED,
                user_id,
                goal.id,
                {"target_amount": str(goal.target_amount)},
            )
        return goal

    async def update_goal(self, user_id: str, goal_id: UUID, **changes: Any) -> SavingsGoal:
        """
        Apply user edits to a goal.

        Raises:
            NotFoundError: If the goal doesn't exist
            ValidationError: If the edited goal is invalid or a field
                can't be edited
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit savings goal fields: {', '.join(sorted(unknown))}")

        current = await self.get_goal(user_id, goal_id)
        goal = self._validator.require(
            self._validator.check_goal({**current.model_dump(), **changes}),
            "savings goal",
        )

        patch = {field: getattr(goal, field) for field in changes}
        await self._store.update(SAVINGS_GOALS, str(goal_id), patch)
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_goal_changed(
                AuditEventType.GOAL_UPDATED,
                user_id,
                goal_id,
                {"fields": sorted(changes)},
            )
        return goal

    async def deposit(self, user_id: str, goal_id: UUID, amount: Any) -> SavingsGoal:
        """
        Add money to a goal.

        Raises:
            ValidationError: If the amount isn't a positive number
        """
        try:
            value = parse_amount(amount)
        except ValueError as e:
            raise ValidationError(f"Invalid deposit: {e}", cause=e) from e
        if value <= 0:
            raise ValidationError("Invalid deposit: amount must be greater than zero")

        goal = await self.get_goal(user_id, goal_id)
        updated = await self.update_goal(
            user_id, goal_id, current_amount=goal.current_amount + value
        )
        logger.info(
            "savings_deposit",
            goal_id=str(goal_id),
            amount=str(value),
            reached=updated.is_reached,
        )
        return updated

    async def delete_goal(self, user_id: str, goal_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the goal doesn't exist
        """
        await self.get_goal(user_id, goal_id)
        if not await self._store.delete(SAVINGS_GOALS, str(goal_id)):
            raise NotFoundError(f"Savings goal {goal_id} not found")
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_goal_changed(
                AuditEventType.GOAL_DELETED, user_id, goal_id
            )
