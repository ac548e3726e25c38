from __future__ import annotations


class EngineError(Exception):
    pass


class ContractViolation(EngineError, ValueError):
    """Raised when a caller hands the engine inputs that break its calling contract."""


class InvalidDateRange(ContractViolation):
    """Raised when start_date is after end_date."""


class AccountMismatch(ContractViolation):
    """Raised when a supplied record belongs to a different account than the one requested."""
