"""Audit storage backed by any DataStore (append-only collection)."""

from budgetflow.models.audit import AuditEvent
from budgetflow.services.storage.interface import (
    AUDIT_LOG,
    AuditStorageInterface,
    DataStore,
)


class DataStoreAuditStorage(AuditStorageInterface):
    """Appends audit events as rows of the audit_log collection."""

    def __init__(self, store: DataStore):
        self._store = store

    async def append_event(self, event: AuditEvent) -> bool:
        await self._store.insert(AUDIT_LOG, event.to_row())
        return True
