"""
Ledger error taxonomy.

Services raise these; the HTTP layer maps each family to a status code.
"""
from typing import Any


class LedgerError(Exception):
    """Base class for every error raised by the ledger engine."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class LedgerValidationError(LedgerError):
    """Input rejected before any write (bad amount, bad split, overpayment...)."""


class NotFoundError(LedgerError):
    """Referenced expense, group, user or settlement does not exist."""


class AccessDeniedError(LedgerError):
    """Actor is not a party to the settlement or not a member of the group."""


class SettlementFinalizedError(LedgerError):
    """Settlement is already confirmed or disputed."""


class ConsistencyError(LedgerError):
    """A post-computation guard failed; the ledger would have been unbalanced."""


class ServiceUnavailableError(LedgerError):
    """The database could not be reached."""
