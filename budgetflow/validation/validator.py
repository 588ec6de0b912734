"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and money parsing (amounts arrive as form strings)
- Required field presence
- Enum membership (category, currency)

STAGE 2 - SEMANTIC VALIDATION:
- Configured limits (max amount, title length)
- Date sanity (entries far in the future)

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Stage 2 only runs on data that already parsed

IMPORTANT: Validation NEVER silently fixes issues and always runs
before anything is sent to the store.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from budgetflow.clock import Clock, SystemClock
from budgetflow.config import AppSettings, get_settings
from budgetflow.errors import ValidationError
from budgetflow.models.budget import (
    BudgetSettings,
    LedgerEntry,
    RecurringRule,
    SavingsGoal,
    ValidationIssue,
    ValidationResult,
)


M = TypeVar("M", bound=BaseModel)


class InputValidator:
    """
    Validates ledger entries, recurring rules, savings goals and budget
    settings.

    Every `check_*` method returns (model_or_None, ValidationResult);
    `require` turns a failed result into a ValidationError.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self._settings = settings or get_settings().app
        self._clock = clock or SystemClock()

    def _validate_schema(
        self,
        model_cls: type[M],
        data: dict[str, Any],
    ) -> tuple[Optional[M], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (parsed_model_or_None, list_of_issues)
        """
        try:
            return model_cls.model_validate(data), []
        except PydanticValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "input"
                message = error["msg"]
                if message.startswith("Value error, "):
                    message = message[len("Value error, "):]
                issues.append(ValidationIssue(
                    field=field,
                    issue_type=error["type"],
                    message=f"{field}: {message}",
                    severity="error",
                ))
            return None, issues

    def _check_amount(self, field: str, amount: Decimal) -> list[ValidationIssue]:
        max_amount = Decimal(str(self._settings.max_amount))
        if amount > max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="too_large",
                message=f"{field}: amount {amount:,.2f} exceeds the limit of {max_amount:,.2f}",
                severity="error",
            )]
        return []

    def _check_title(self, title: str) -> list[ValidationIssue]:
        if len(title) > self._settings.max_title_length:
            return [ValidationIssue(
                field="title",
                issue_type="too_long",
                message=f"title: must be at most {self._settings.max_title_length} characters",
                severity="error",
            )]
        return []

    @staticmethod
    def _result(schema_issues: list[ValidationIssue], semantic_issues: list[ValidationIssue]) -> ValidationResult:
        return ValidationResult(
            schema_valid=not any(i.severity == "error" for i in schema_issues),
            semantic_valid=not schema_issues and not any(i.severity == "error" for i in semantic_issues),
            issues=schema_issues + semantic_issues,
        )

    def check_entry(self, data: dict[str, Any]) -> tuple[Optional[LedgerEntry], ValidationResult]:
        """Validate a ledger entry before it is written."""
        entry, issues = self._validate_schema(LedgerEntry, data)
        semantic: list[ValidationIssue] = []

        # Only run stage 2 if stage 1 passes
        if entry is not None:
            semantic += self._check_amount("amount", entry.amount)
            semantic += self._check_title(entry.title)

            latest = self._clock.today() + timedelta(days=self._settings.future_date_tolerance_days)
            if entry.entry_date > latest:
                semantic.append(ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message=f"date: {entry.entry_date.isoformat()} is too far in the future",
                    severity="error",
                ))

        return entry, self._result(issues, semantic)

    def check_rule(self, data: dict[str, Any]) -> tuple[Optional[RecurringRule], ValidationResult]:
        """Validate a recurring rule (frequency must already be parsed)."""
        rule, issues = self._validate_schema(RecurringRule, data)
        semantic: list[ValidationIssue] = []

        if rule is not None:
            semantic += self._check_amount("amount", rule.amount)
            semantic += self._check_title(rule.title)

        return rule, self._result(issues, semantic)

    def check_goal(self, data: dict[str, Any]) -> tuple[Optional[SavingsGoal], ValidationResult]:
        """Validate a savings goal before it is written."""
        goal, issues = self._validate_schema(SavingsGoal, data)
        semantic: list[ValidationIssue] = []

        if goal is not None:
            semantic += self._check_amount("target_amount", goal.target_amount)
            semantic += self._check_amount("current_amount", goal.current_amount)
            semantic += self._check_title(goal.title)

            if goal.target_date and goal.target_date < self._clock.today():
                semantic.append(ValidationIssue(
                    field="target_date",
                    issue_type="past_date",
                    message=f"target_date: {goal.target_date.isoformat()} has already passed",
                    severity="warning",
                ))

        return goal, self._result(issues, semantic)

    def check_profile(self, data: dict[str, Any]) -> tuple[Optional[BudgetSettings], ValidationResult]:
        """Validate a complete budget settings record."""
        settings, issues = self._validate_schema(BudgetSettings, data)
        semantic: list[ValidationIssue] = []

        if settings is not None:
            semantic += self._check_amount("monthly_income", settings.monthly_income)
            semantic += self._check_amount("fixed_expense_amount", settings.fixed_expense_amount)

        return settings, self._result(issues, semantic)

    @staticmethod
    def require(checked: tuple[Optional[M], ValidationResult], subject: str) -> M:
        """
        Return the validated model or raise ValidationError.

        Warnings never block; any error-level issue does.
        """
        model, result = checked
        if model is None or result.has_errors:
            messages = [i.message for i in result.issues if i.severity == "error"]
            raise ValidationError(
                f"Invalid {subject}: " + "; ".join(messages),
                issues=result.issues,
            )
        return model

    @staticmethod
    def get_user_friendly_summary(result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        errors = [i for i in result.issues if i.severity == "error"]
        if errors:
            lines.append("Please fix the following:")
            for issue in errors:
                lines.append(f"   • {issue.message}")

        if result.warnings:
            lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines).strip()
