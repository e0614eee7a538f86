"""
synchronizer.py - Materializes ledger-state rows as verified events.

DATA-QUALITY TOLERANCE (degrade, never abort):
- Unparseable occurred_at → now, with a warning
- Unparseable payload JSON → {}, with a warning
- Any per-row failure → logged, counted, skipped

NEVER OVERWRITES: existing (product_id, event_id) rows are left untouched.
The existence check only saves a write; the conditional insert is the
actual guarantee against a concurrent insert of the same event.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ledger_history.models import LedgerSourceEvent, VerificationResult, VerifiedEvent
from ledger_history.services.reconciliation.errors import SyncError
from ledger_history.services.reconciliation.hasher import ENRICHMENT_KEY
from ledger_history.services.reconciliation.store import HistoryStore

logger = logging.getLogger(__name__)

# Fallback encodings after RFC 3339; naive values are read as UTC
FRACTIONAL_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%d %H:%M:%S.%f")

LEDGER_STATUS_RESULTS = {
    "pendiente": VerificationResult.PENDING,
    "confirmado": VerificationResult.OK,
    "echec": VerificationResult.NOT_FOUND,
    "failed": VerificationResult.NOT_FOUND,
}


@dataclass
class SyncReport:
    """Outcome of one product sync."""

    product_id: str
    fetched: int = 0
    inserted: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def partial(self) -> bool:
        return self.failed > 0


def map_ledger_status(status: str | None) -> VerificationResult:
    return LEDGER_STATUS_RESULTS.get((status or "").strip().lower(), VerificationResult.UNKNOWN)


def parse_occurred_at(value: str | None) -> datetime | None:
    """RFC 3339 first, then the fractional-seconds formats. None if nothing fits."""
    if not value:
        return None
    text = value.strip()

    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is not None and dt.tzinfo is not None:
        return dt.astimezone(UTC)

    for fmt in FRACTIONAL_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def parse_payload(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class LedgerSynchronizer:
    def __init__(
        self,
        store: HistoryStore,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self._clock = clock

    def sync_product(self, product_id: str) -> SyncReport:
        """
        Pull every ledger-state row of the product into the verified events.

        Raises:
            SyncError: The ledger-state table could not be read.
        """
        try:
            rows = self.store.list_ledger_source_events(product_id)
        except SQLAlchemyError as e:
            raise SyncError(
                f"Cannot read ledger events for product {product_id}: {e}",
                details={"product_id": product_id},
            ) from e

        report = SyncReport(product_id=product_id, fetched=len(rows))

        for row in rows:
            try:
                if self.store.event_exists(product_id, row.transaction_id):
                    report.skipped += 1
                    continue

                if self.store.insert_event_if_absent(self.to_verified_event(row)):
                    report.inserted += 1
                else:
                    # Lost the race to the stream worker
                    report.skipped += 1
            except Exception:
                report.failed += 1
                logger.exception(
                    "Sync of ledger row %s for product %s failed; skipping",
                    row.transaction_id,
                    product_id,
                )

        logger.info(
            "Synced product %s: fetched=%d inserted=%d skipped=%d failed=%d",
            product_id,
            report.fetched,
            report.inserted,
            report.skipped,
            report.failed,
        )
        return report

    def to_verified_event(self, row: LedgerSourceEvent) -> VerifiedEvent:
        now = self._clock()

        occurred_at = parse_occurred_at(row.occurred_at)
        if occurred_at is None:
            logger.warning(
                "Ledger row %s: unparseable occurred_at %r, using now",
                row.transaction_id,
                row.occurred_at,
            )
            occurred_at = now

        payload = parse_payload(row.payload)
        if payload is None:
            logger.warning(
                "Ledger row %s: payload is not a JSON object, using {}",
                row.transaction_id,
            )
            payload = {}

        payload[ENRICHMENT_KEY] = {
            "emitting_actor": row.emitting_actor or "",
            "ledger_status": row.ledger_status or "",
            "storage_reference": row.storage_reference or "",
        }

        return VerifiedEvent(
            product_id=row.product_id,
            event_id=row.transaction_id,
            event_type=row.event_type or "",
            occurred_at=occurred_at,
            location=row.emitting_actor or "",
            payload=payload,
            content_hash=row.content_hash or "",
            ledger_reference=row.ledger_address or "",
            verification_result=map_ledger_status(row.ledger_status).value,
            notes="",
            raw_payload=json.dumps(_row_snapshot(row), sort_keys=True),
            created_at=now,
        )


def _row_snapshot(row: LedgerSourceEvent) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}
