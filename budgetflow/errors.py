"""
Error taxonomy shared across BudgetFlow.

Storage errors live next to the storage interface
(budgetflow.services.storage.interface) but derive from BudgetFlowError
so callers can isolate background work with a single except clause.
"""

from typing import Optional


class BudgetFlowError(Exception):
    """Base exception. Keeps a human-readable message and the original cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__


class ValidationError(BudgetFlowError):
    """
    Bad amount, category, date or title on a rule, entry or profile.

    Raised before any store call. `issues` holds the individual
    ValidationIssue objects so a UI can point at the offending fields.
    """

    def __init__(self, message: str, issues: Optional[list] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.issues = issues or []


class ConfigurationError(BudgetFlowError):
    """Unrecognized frequency or similar setup mistake. Never retried."""
    pass
