"""
Abstract Storage Interface

DESIGN DECISION: The reconciliation core talks to a generic record store
through four operations (query, insert, update, delete). This allows us to:
1. Run against Google Sheets or any hosted backend
2. Use in-memory storage for testing
3. Add retry and caching layers transparently
4. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Equality and range filters plus ordering are all the core needs.

Idempotency is enforced HERE, at the storage boundary: a collection may
declare unique fields, and inserting a second row with the same non-empty
value raises DuplicateError.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

from budgetflow.errors import BudgetFlowError
from budgetflow.models.audit import AuditEvent


# Collection names
PROFILES = "profiles"
RECURRING_RULES = "recurring_rules"
EXPENSES = "expenses"
AUDIT_LOG = "audit_log"
SAVINGS_GOALS = "savings_goals"

# Fields that must be unique within a collection (None/empty values exempt)
UNIQUE_CONSTRAINTS: dict[str, tuple[str, ...]] = {
    EXPENSES: ("idempotency_key",),
}

Row = dict[str, Any]


def to_cell(value: Any) -> str:
    """Serialize a Python value into its plain string form."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def same_values(row: Row, expected: Row) -> bool:
    """True when `row` holds every value of `expected`, compared as strings."""
    return all(to_cell(row.get(field)) == to_cell(value) for field, value in expected.items())


class Filter(BaseModel):
    """A single predicate on a row field."""
    model_config = ConfigDict(frozen=True)

    field: str
    op: Literal["eq", "gte", "lte"] = "eq"
    value: Any = None

    @classmethod
    def eq(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op="eq", value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op="gte", value=value)

    @classmethod
    def lte(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op="lte", value=value)

    def matches(self, row: Row) -> bool:
        actual = row.get(self.field)
        if self.op == "eq":
            return actual == self.value
        # Range filters never match missing values
        if actual is None:
            return False
        if self.op == "gte":
            return actual >= self.value
        return actual <= self.value


class DataStore(ABC):
    """
    Abstract interface for record storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods. Rows are plain dicts with an "id" key.
    """

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        """
        Return rows matching every filter.

        Args:
            collection: Collection name
            filters: Predicates combined with AND
            order_by: Field to sort by (rows missing it sort first)
            descending: Reverse the sort order
            limit: Maximum number of rows

        Returns:
            List of matching rows (copies; mutating them has no effect)
        """
        pass

    @abstractmethod
    async def insert(self, collection: str, row: Row) -> Row:
        """
        Insert a row. An "id" is generated when missing.

        Raises:
            DuplicateError: If the id or a unique field already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        row_id: str,
        patch: Row,
        expected: Optional[list[Filter]] = None,
    ) -> Row:
        """
        Apply `patch` to the row with `row_id` and return the new row.

        When `expected` is given the patch is applied only if the stored
        row still matches every filter (compare-and-set).

        Raises:
            NotFoundError: If the row doesn't exist
            DuplicateError: If the patch violates a unique field
            ConflictError: If the row no longer matches `expected`
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, row_id: str) -> bool:
        """
        Delete a row by ID.

        Returns:
            True if a row was deleted, False if it didn't exist
        """
        pass

    async def get(self, collection: str, row_id: str) -> Optional[Row]:
        """Fetch a single row by id, or None."""
        rows = await self.query(collection, [Filter.eq("id", str(row_id))], limit=1)
        return rows[0] if rows else None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass


class StorageError(BudgetFlowError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class TransientStoreError(StorageError):
    """Timeout or network failure; safe to retry."""
    pass


class ConflictError(StorageError):
    """Row changed since it was read; a conditional update was refused."""
    pass
