"""
Storage Services Package

Provides the abstract data store, its backends (in-memory, Google Sheets),
the uniform retry policy and the read cache.
"""

from budgetflow.services.storage.interface import (
    AUDIT_LOG,
    EXPENSES,
    PROFILES,
    RECURRING_RULES,
    SAVINGS_GOALS,
    AuditStorageInterface,
    ConflictError,
    DataStore,
    DuplicateError,
    Filter,
    NotFoundError,
    StorageError,
    TransientStoreError,
)
from budgetflow.services.storage.audit import DataStoreAuditStorage
from budgetflow.services.storage.cache import TTLCache
from budgetflow.services.storage.memory import InMemoryDataStore
from budgetflow.services.storage.retry import RetryingDataStore, RetryPolicy

__all__ = [
    # Collections
    "AUDIT_LOG",
    "EXPENSES",
    "PROFILES",
    "RECURRING_RULES",
    "SAVINGS_GOALS",
    # Interfaces
    "AuditStorageInterface",
    "DataStore",
    "Filter",
    # Exceptions
    "ConflictError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "TransientStoreError",
    # Implementations
    "DataStoreAuditStorage",
    "InMemoryDataStore",
    "RetryingDataStore",
    "RetryPolicy",
    "TTLCache",
]
