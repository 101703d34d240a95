# Overview: Classified error kinds raised by the ledger/valuation engine.

"""
Every rejected engine operation raises one of the LedgerError subclasses
below. Callers catch by type (or inspect `code`), never by message.

- NotFoundError            unknown item/vendor/transaction/batch/user reference
- InvalidStateError        disabled record, correcting a reversal, over-return
- PolicyViolationError     sign mismatch, missing required field, negative on-hand
- ConcurrencyConflictError lock timeout or serialization failure (retry with backoff)
- PersistenceFailureError  storage layer error; the unit of work was rolled back

Validation errors are raised before any write. Anything raised after a write
has started rolls back the whole unit of work.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for classified engine errors."""

    code = "LEDGER_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        entity_type: str | None = None,
        entity_id: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.entity_type = entity_type
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id is not None else None,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code} field={self.field!r} entity={self.entity_type}:{self.entity_id}>"


class NotFoundError(LedgerError):
    code = "NOT_FOUND"


class InvalidStateError(LedgerError):
    code = "INVALID_STATE"


class PolicyViolationError(LedgerError):
    code = "POLICY_VIOLATION"


class ConcurrencyConflictError(LedgerError):
    """Lock wait expired or the database reported a serialization conflict."""

    code = "CONCURRENCY_CONFLICT"
    retryable = True


class PersistenceFailureError(LedgerError):
    code = "PERSISTENCE_FAILURE"
