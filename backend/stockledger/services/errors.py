# Overview: Typed failures raised by the ledger engine and surfaced to callers.

from __future__ import annotations


class LedgerError(Exception):
    """Base for every failure the engine reports to its caller."""
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(LedgerError):
    """Referenced product, batch, sale or session is absent (or inactive)."""
    status_code = 404
    code = "not_found"


class InsufficientStockError(LedgerError):
    """Outgoing movement would drive stock below zero. Nothing was written."""
    status_code = 409
    code = "insufficient_stock"


class InvalidQuantityIncreaseError(LedgerError):
    """Expiration batch quantities may only move down."""
    status_code = 400
    code = "invalid_quantity_increase"


class SessionAlreadyOpenError(LedgerError):
    """A cash session already holds the drawer. details["session"] is that session."""
    status_code = 409
    code = "session_already_open"


class SessionNotOpenOrCountedError(LedgerError):
    """Cash session is not in a state that allows the requested transition."""
    status_code = 409
    code = "session_not_open_or_counted"


class StorageUnavailableError(LedgerError):
    """
    Transient storage failure (lock timeout, deadlock, version conflict) that
    survived every retry. Safe to retry the whole operation.
    """
    status_code = 503
    code = "storage_unavailable"
