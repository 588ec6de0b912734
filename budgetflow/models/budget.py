"""
Core Data Models for BudgetFlow

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce a decimal money type at the boundary (form inputs arrive as strings)
2. Provide clear validation error messages
3. Round-trip through any DataStore as plain dict rows
4. Support the audit trail

DESIGN DECISION: Amounts are parsed explicitly by `parse_amount` before
pydantic sees them. Floats, ints and numeric strings are accepted;
booleans, NaN, infinities and non-numeric text are rejected.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MAX_AMOUNT = Decimal("1000000000")
CENT = Decimal("0.01")


def parse_amount(value: Any) -> Decimal:
    """
    Parse a money value into a Decimal rounded to cents.

    Raises ValueError for anything that isn't a finite number within
    MAX_AMOUNT. Sign checks are left to the field constraints.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be a number, not a boolean")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            raise ValueError("Amount is required")
        try:
            amount = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"Amount must be a valid number, got {value!r}") from e
    else:
        raise ValueError(f"Amount must be a valid number, got {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    if abs(amount) > MAX_AMOUNT:
        raise ValueError("Amount is too large")

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _coerce_date(value: Any) -> Any:
    """Accept full ISO timestamps where a date is expected."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


Money = Annotated[Decimal, BeforeValidator(parse_amount)]
PositiveMoney = Annotated[Money, Field(gt=0, description="Amount, strictly positive")]
NonNegativeMoney = Annotated[Money, Field(ge=0, description="Amount, zero or more")]
LenientDate = Annotated[date, BeforeValidator(_coerce_date)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """How often a recurring rule produces a ledger entry."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ExpenseCategory(str, Enum):
    """
    Supported expense categories.

    "Bills" is the category used by the monthly fixed-expense posting.
    """
    FOOD = "Food"
    TRANSPORT = "Transport"
    HOUSING = "Housing"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    HEALTH = "Health"
    SHOPPING = "Shopping"
    SAVINGS = "Savings"
    BILLS = "Bills"
    OTHER = "Other"


class CurrencyCode(str, Enum):
    """Display currency of a user. Amounts are never converted."""
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    INR = "INR"
    CAD = "CAD"
    AUD = "AUD"


# =============================================================================
# USER BUDGET SETTINGS
# =============================================================================

class BudgetSettings(BaseModel):
    """
    Per-user budget configuration (the "profile").

    Stored in the profiles collection with the user id as row id.
    Only the user (profile edit) and the Reset Tracker mutate it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of these settings"
    )
    reset_enabled: bool = Field(
        default=False,
        description="Use a custom reset day instead of calendar months"
    )
    reset_day: int = Field(
        default=1,
        ge=1,
        le=31,
        description="Day of month on which a new budget period starts"
    )
    last_reset_date: Optional[LenientDate] = Field(
        default=None,
        description="When the Reset Tracker last started a period"
    )
    current_period_start: Optional[LenientDate] = Field(
        default=None,
        description="Start of the period opened by the last reset"
    )
    monthly_income: NonNegativeMoney = Decimal("0")
    fixed_expense_amount: NonNegativeMoney = Decimal("0")
    currency: CurrencyCode = CurrencyCode.USD

    @classmethod
    def defaults(cls, user_id: str) -> "BudgetSettings":
        """Settings used when a user has no stored profile yet."""
        return cls(user_id=user_id)

    def to_row(self) -> dict:
        row = self.model_dump()
        row["id"] = self.user_id
        return row


# =============================================================================
# RECURRING RULES
# =============================================================================

class RecurringRule(BaseModel):
    """
    A template that periodically generates a ledger entry.

    INVARIANT: next_due_date is one frequency step after
    last_generated_date (or start_date before the first posting)
    and never moves backwards.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique rule ID"
    )
    user_id: str = Field(..., min_length=1)
    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Title copied onto every generated entry"
    )
    amount: PositiveMoney
    category: ExpenseCategory
    frequency: Frequency
    start_date: date = Field(
        ...,
        description="Date the user created the rule from"
    )
    next_due_date: date = Field(
        ...,
        description="Date of the next occurrence to materialize"
    )
    last_generated_date: Optional[date] = Field(
        default=None,
        description="Due date of the most recent materialized occurrence"
    )
    anchor_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Preferred day of month for monthly/yearly rules"
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurringRule':
        """Validate date relationships."""
        if self.last_generated_date and self.next_due_date <= self.last_generated_date:
            raise ValueError("Next due date must be after the last generated date")
        if self.next_due_date < self.start_date:
            raise ValueError("Next due date cannot be before the start date")
        return self

    def occurrence_key(self, due_date: date) -> str:
        """Idempotency key of the entry materialized for `due_date`."""
        return f"rule:{self.id}:{due_date.isoformat()}"

    def to_row(self) -> dict:
        return self.model_dump()


# =============================================================================
# LEDGER
# =============================================================================

class LedgerEntry(BaseModel):
    """
    One expense in the ledger.

    Created by the user, by the Due-Rule Processor or by the
    Fixed-Expense Injector. Entries that result from reconciliation
    carry an idempotency key; the store refuses a second entry
    with the same key.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry ID"
    )
    user_id: str = Field(..., min_length=1)
    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    amount: PositiveMoney
    category: ExpenseCategory
    entry_date: date = Field(
        ...,
        alias="date",
        description="Date the expense counts against"
    )
    is_recurring: bool = False
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Stable key of the logical posting, unique per store"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_row(self) -> dict:
        return self.model_dump(by_alias=True)


class BudgetPeriod(BaseModel):
    """A derived date range, inclusive on both ends."""

    period_start: date
    period_end: date

    @model_validator(mode='after')
    def validate_order(self) -> 'BudgetPeriod':
        if self.period_end < self.period_start:
            raise ValueError("Period end cannot be before period start")
        return self

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end


# =============================================================================
# SAVINGS GOALS
# =============================================================================

class SavingsGoal(BaseModel):
    """
    An amount the user is saving towards.

    Deposits only ever raise current_amount; it may pass the target.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=100)
    target_amount: PositiveMoney
    current_amount: NonNegativeMoney = Decimal("0")
    target_date: Optional[LenientDate] = None
    color: str = Field(
        default="#10b981",
        pattern=r"^#[0-9a-fA-F]{6}$",
        description="Display color of the progress bar"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def progress_percent(self) -> Decimal:
        """Share of the target reached, capped at 100."""
        progress = self.current_amount / self.target_amount * 100
        return min(progress, Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def is_reached(self) -> bool:
        return self.current_amount >= self.target_amount

    def to_row(self) -> dict:
        return self.model_dump()


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'too_large')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields, money parsing)
    Stage 2: Semantic validation (limits, date sanity)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]


# =============================================================================
# FLOW RESULTS
# =============================================================================

class ReconciliationReport(BaseModel):
    """What one on-load reconciliation run did for a user."""

    user_id: str
    run_date: date
    reset_performed: bool = False
    rules_processed: int = Field(default=0, ge=0)
    fixed_expense_posted: bool = False
    errors: list[str] = Field(
        default_factory=list,
        description="Failures of individual steps; logged, never raised"
    )

    @property
    def succeeded(self) -> bool:
        return not self.errors


class PeriodSummary(BaseModel):
    """Entries of the current budget period with simple totals."""

    user_id: str
    period: BudgetPeriod
    entries: list[LedgerEntry] = Field(default_factory=list)
    total_spent: Decimal = Decimal("0")
    monthly_income: Decimal = Decimal("0")
    currency: CurrencyCode = CurrencyCode.USD

    @property
    def remaining_budget(self) -> Decimal:
        return self.monthly_income - self.total_spent

    @field_validator("total_spent", "monthly_income")
    @classmethod
    def round_to_cents(cls, v: Decimal) -> Decimal:
        return v.quantize(CENT, rounding=ROUND_HALF_UP)
