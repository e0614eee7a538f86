"""
errors.py - Reconciliation error taxonomy.

FAILURE SEMANTICS:
- NoEventsError, SyncError, PersistError, StoreError → abort the run
- VerificationError family → recorded as an inconsistency, run continues
- PublishError → logged only, never retried
- SerializationError → offending row/message skipped
"""

from typing import Any


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    code = "RECONCILIATION_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: str | None = None,
    ):
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class SerializationError(ReconciliationError):
    """Payload cannot be canonicalized (NaN, non-string key, unsupported type)."""

    code = "SERIALIZATION_ERROR"


class NoEventsError(ReconciliationError):
    """Nothing to reconcile for the product."""

    code = "NO_EVENTS"


class SyncError(ReconciliationError):
    """Ledger source table could not be read."""

    code = "SYNC_FAILED"


class PersistError(ReconciliationError):
    """Aggregate could not be written."""

    code = "PERSIST_FAILED"


class StoreError(ReconciliationError):
    """Store read failed."""

    code = "STORE_ERROR"


class PublishError(ReconciliationError):
    """Domain event could not be delivered to the bus."""

    code = "PUBLISH_FAILED"


class EventNotFoundError(ReconciliationError):
    code = "EVENT_NOT_FOUND"


class VerificationError(ReconciliationError):
    """Event could not be confirmed against the ledger."""

    code = "VERIFICATION_FAILED"


class MissingReferenceError(VerificationError):
    code = "MISSING_REFERENCE"


class LedgerUnavailableError(VerificationError):
    code = "LEDGER_UNAVAILABLE"


class HashMismatchError(VerificationError):
    code = "HASH_MISMATCH"
