"""
In-Memory Storage Implementation

Used by the test suite and as the fallback backend when no hosted
store is configured. Enforces the same unique constraints as any
real backend so idempotency behaves identically.

Each operation completes without awaiting, so under asyncio a single
operation is atomic with respect to other coroutines.
"""

from typing import Optional
from uuid import uuid4

from budgetflow.services.storage.interface import (
    UNIQUE_CONSTRAINTS,
    ConflictError,
    DataStore,
    DuplicateError,
    Filter,
    NotFoundError,
    Row,
)


class InMemoryDataStore(DataStore):
    """Dict-of-dicts store. Insertion order is preserved per collection."""

    def __init__(self, unique_constraints: Optional[dict[str, tuple[str, ...]]] = None):
        self._collections: dict[str, dict[str, Row]] = {}
        self._unique = dict(UNIQUE_CONSTRAINTS if unique_constraints is None else unique_constraints)

    def _table(self, collection: str) -> dict[str, Row]:
        return self._collections.setdefault(collection, {})

    def _check_unique(self, collection: str, row: Row, exclude_id: Optional[str] = None) -> None:
        for field in self._unique.get(collection, ()):
            value = row.get(field)
            if value in (None, ""):
                continue
            for existing_id, existing in self._table(collection).items():
                if existing_id != exclude_id and existing.get(field) == value:
                    raise DuplicateError(
                        f"{collection}.{field} already contains {value!r}"
                    )

    def rows(self, collection: str) -> list[Row]:
        """All rows of a collection, in insertion order (test helper)."""
        return [dict(row) for row in self._table(collection).values()]

    async def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        filters = filters or []
        result = [
            dict(row)
            for row in self._table(collection).values()
            if all(f.matches(row) for f in filters)
        ]

        if order_by:
            result.sort(
                key=lambda r: (r.get(order_by) is not None, r.get(order_by)),
                reverse=descending,
            )

        if limit is not None:
            result = result[:limit]
        return result

    async def insert(self, collection: str, row: Row) -> Row:
        new_row = dict(row)
        new_row["id"] = str(new_row.get("id") or uuid4())

        table = self._table(collection)
        if new_row["id"] in table:
            raise DuplicateError(f"{collection} already contains id {new_row['id']}")
        self._check_unique(collection, new_row)

        table[new_row["id"]] = new_row
        return dict(new_row)

    async def update(
        self,
        collection: str,
        row_id: str,
        patch: Row,
        expected: Optional[list[Filter]] = None,
    ) -> Row:
        row_id = str(row_id)
        table = self._table(collection)
        if row_id not in table:
            raise NotFoundError(f"{collection} has no row with id {row_id}")
        if expected and not all(f.matches(table[row_id]) for f in expected):
            raise ConflictError(f"{collection} row {row_id} changed since it was read")

        updated = {**table[row_id], **patch, "id": row_id}
        self._check_unique(collection, updated, exclude_id=row_id)

        table[row_id] = updated
        return dict(updated)

    async def delete(self, collection: str, row_id: str) -> bool:
        return self._table(collection).pop(str(row_id), None) is not None
