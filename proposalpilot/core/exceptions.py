"""
Custom Exception Classes for the ProposalPilot budget engine.

Structural errors only. Compliance problems are reported as
``Violation`` records and never raised.
"""
from typing import Optional


class BudgetEngineError(Exception):
    """Base class for errors raised by the budget engine."""


class BudgetNotFoundError(BudgetEngineError, LookupError):
    """Exception raised when a referenced category, item, field or template does not exist."""

    def __init__(self, resource: str, id: Optional[str] = None):
        self.resource = resource
        self.id = id
        detail = f"{resource} not found" + (f": {id}" if id else "")
        super().__init__(detail)
