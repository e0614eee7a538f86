"""
verifier.py - Ledger verification of a single event.

CONTRACT:
1. At most max_retries receipt lookups per verify() call
2. Linear backoff: after failed attempt i (1-indexed) wait i seconds,
   no wait after the last attempt
3. Mutates event.verification_result / event.notes in place
4. NEVER persists: the caller owns persistence
"""

import logging
import time
from collections.abc import Callable

from ledger_history.core.ledger import LedgerClient, LedgerRPCError
from ledger_history.models import VerificationResult, VerifiedEvent
from ledger_history.services.reconciliation.errors import (
    HashMismatchError,
    LedgerUnavailableError,
    MissingReferenceError,
    SerializationError,
)
from ledger_history.services.reconciliation.hasher import compute_content_hash, content_view

logger = logging.getLogger(__name__)


class LedgerVerifier:
    def __init__(
        self,
        ledger_client: LedgerClient,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger_client = ledger_client
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

    def verify(self, event: VerifiedEvent) -> None:
        """
        Confirm the event's ledger reference and compare content hashes.

        Raises:
            MissingReferenceError: Event has no ledger reference.
            LedgerUnavailableError: Every lookup failed (result NOT_FOUND).
            HashMismatchError: Recomputed hash differs (result HASH_MISMATCH).
        """
        if not event.ledger_reference:
            raise MissingReferenceError(
                "Missing ledger reference",
                details={"product_id": event.product_id, "event_id": event.event_id},
            )

        last_error = self._lookup_receipt(event.ledger_reference)
        if last_error is not None:
            event.verification_result = VerificationResult.NOT_FOUND.value
            event.notes = f"Transaction not found: {last_error}"
            raise LedgerUnavailableError(
                f"Transaction {event.ledger_reference} not found after "
                f"{self.max_retries} attempts",
                details={"event_id": event.event_id, "error": last_error},
            )

        try:
            local_hash = compute_content_hash(content_view(event.payload or {}))
        except SerializationError as e:
            event.verification_result = VerificationResult.HASH_MISMATCH.value
            event.notes = f"Local hash computation failed: {e.message}"
            raise HashMismatchError(
                "Local hash computation failed",
                details={"event_id": event.event_id, **e.details},
            ) from e

        if local_hash != event.content_hash:
            event.verification_result = VerificationResult.HASH_MISMATCH.value
            event.notes = f"Hash mismatch: local={local_hash}, event={event.content_hash}"
            raise HashMismatchError(
                "Hash mismatch",
                details={
                    "event_id": event.event_id,
                    "local_hash": local_hash,
                    "event_hash": event.content_hash,
                },
            )

        event.verification_result = VerificationResult.OK.value
        event.notes = "Verification succeeded"

    def _lookup_receipt(self, reference: str) -> str | None:
        """Returns None on success, else the last error message."""
        last_error: str | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                receipt = self.ledger_client.get_transaction_receipt(reference)
            except LedgerRPCError as e:
                last_error = str(e)
            else:
                if receipt is not None:
                    return None
                last_error = "receipt not found"

            logger.debug(
                "Receipt lookup %d/%d for %s failed: %s",
                attempt,
                self.max_retries,
                reference,
                last_error,
            )
            if attempt < self.max_retries:
                self._sleep(attempt)

        return last_error

    def verify_connection(self) -> None:
        """Unretried connectivity probe for startup and readiness checks."""
        try:
            network_id = self.ledger_client.get_network_id()
        except LedgerRPCError as e:
            raise LedgerUnavailableError(f"Cannot reach ledger: {e}") from e
        logger.info("Ledger connection verified (network %s)", network_id)
