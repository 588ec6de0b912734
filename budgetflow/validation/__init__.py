"""Input validation package."""

from budgetflow.validation.validator import InputValidator

__all__ = ["InputValidator"]
