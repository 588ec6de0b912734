"""
Profile Service

Budget settings live in the profiles collection, one row per user with
the user id as row id. A user without a row gets the defaults: reset
disabled, reset day 1, no income, no fixed expenses.
"""

from datetime import date
from typing import Any, Optional

import structlog

from budgetflow.audit import AuditLogger
from budgetflow.config import CacheSettings, get_settings
from budgetflow.models.budget import BudgetSettings
from budgetflow.services.storage import (
    PROFILES,
    DataStore,
    DuplicateError,
    NotFoundError,
    TTLCache,
)
from budgetflow.validation import InputValidator


logger = structlog.get_logger(__name__)

CACHE_NAMESPACE = "profile"


class ProfileService:
    """Reads and updates per-user budget settings."""

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
            cache = TTLCache(cache_settings.profile_ttl_seconds)
        self._cache = cache

    def invalidate_cache(self, user_id: str) -> None:
        self._cache.invalidate(CACHE_NAMESPACE, user_id)

    async def get_settings(self, user_id: str, use_cache: bool = True) -> BudgetSettings:
        """Stored settings of a user, or the defaults when none exist."""
        key = (CACHE_NAMESPACE, user_id)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        row = await self._store.get(PROFILES, user_id)
        if row is None:
            settings = BudgetSettings.defaults(user_id)
        else:
            settings = BudgetSettings.model_validate(row)

        self._cache.set(key, settings)
        return settings

    async def get_or_create(self, user_id: str) -> BudgetSettings:
        """Settings of a user, storing the defaults on first access."""
        row = await self._store.get(PROFILES, user_id)
        if row is not None:
            return BudgetSettings.model_validate(row)

        settings = BudgetSettings.defaults(user_id)
        try:
            await self._store.insert(PROFILES, settings.to_row())
        except DuplicateError:
            # Created concurrently; the stored row wins
            return await self.get_settings(user_id, use_cache=False)

        self.invalidate_cache(user_id)
        return settings

    async def update_profile(self, user_id: str, **changes: Any) -> BudgetSettings:
        """
        Apply a user's edit to their budget settings.

        Raises:
            ValidationError: Before any store call if the result is invalid
        """
        changes.pop("user_id", None)
        changes.pop("id", None)

        current = await self.get_settings(user_id, use_cache=False)
        merged = {**current.model_dump(), **changes, "user_id": user_id}
        settings = self._validator.require(
            self._validator.check_profile(merged), "budget settings"
        )

        full_row = settings.to_row()
        patch = {field: full_row[field] for field in changes if field in full_row}
        try:
            await self._store.update(PROFILES, user_id, patch)
        except NotFoundError:
            await self._store.insert(PROFILES, full_row)
        self.invalidate_cache(user_id)

        if self._audit_logger:
            await self._audit_logger.log_profile_updated(user_id, list(patch))
        return settings

    async def update_reset_markers(
        self,
        user_id: str,
        last_reset_date: date,
        current_period_start: date,
    ) -> BudgetSettings:
        """Persist the result of a budget period reset."""
        patch = {
            "last_reset_date": last_reset_date,
            "current_period_start": current_period_start,
        }
        try:
            row = await self._store.update(PROFILES, user_id, patch)
        except NotFoundError:
            row = await self._store.insert(
                PROFILES, {**BudgetSettings.defaults(user_id).to_row(), **patch}
            )
        self.invalidate_cache(user_id)

        logger.info(
            "reset_markers_updated",
            user_id=user_id,
            last_reset_date=last_reset_date.isoformat(),
            current_period_start=current_period_start.isoformat(),
        )
        return BudgetSettings.model_validate(row)
