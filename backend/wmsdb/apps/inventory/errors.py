"""
Ledger error kinds.

Every rejection of a movement surfaces as one of these. Only
`ConflictError` and `StorageUnavailableError` are retryable, and retrying
is the caller's decision: the processor never retries on its own.
"""

from __future__ import annotations

from typing import Dict


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_detail(self) -> Dict[str, object]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class InvalidQuantityError(LedgerError):
    code = "invalid_quantity"
    status_code = 422


class InvalidLocationPairError(LedgerError):
    code = "invalid_location_pair"
    status_code = 422


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class InsufficientStockError(LedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, message: str, *, available=None, requested=None) -> None:
        super().__init__(message)
        self.available = available
        self.requested = requested


class ConflictError(LedgerError):
    code = "conflict"
    status_code = 409
    retryable = True


class StorageUnavailableError(LedgerError):
    code = "storage_unavailable"
    status_code = 503
    retryable = True
