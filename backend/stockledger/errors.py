"""
Stock ledger error taxonomy.

Every failure a caller can act on is a distinct subclass of ``LedgerError``:

- ValidationError: malformed input, rejected before any transaction starts.
- NotFoundError: a referenced row is missing at transaction time.
- ConflictError: a concurrent modification (or uniqueness collision) was
  detected at commit. The caller may re-run the whole operation.

Oversold stock is NOT an error (see ``services.fifo.Allocation.shortfall``),
and an already-posted recurring expense is a normal skip.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for stock ledger failures."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""


class NotFoundError(LedgerError, LookupError):
    """404-level missing product, order or customer."""


class ConflictError(LedgerError):
    """409-level concurrent modification or duplicate write."""
