"""Domain exceptions for the rental ledger."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""
    pass


class ValidationError(LedgerError, ValueError):
    """Write-side input was rejected (missing fields, bad amounts or percentages)."""
    pass


class NotFoundError(LedgerError, KeyError):
    """Referenced booking, apartment or rate does not exist."""

    def __str__(self):
        return str(self.args[0]) if self.args else "not found"


class RateFetchError(LedgerError):
    """Live exchange rates could not be fetched."""
    pass
