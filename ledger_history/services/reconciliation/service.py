"""
service.py - Reconciliation orchestrator.

PIPELINE (reconcile):
1. Freshness check (skipped with force): fresh aggregate returned as-is
2. Ledger sync: failure is fatal (SyncError)
3. Load verified events: none is fatal (NoEventsError)
4. Lot filter: events without a lot field match every lot
5. Verify: failures become inconsistencies, the run continues
6. Derive state, build and persist aggregate: failure is fatal (PersistError)
7. Publish exactly one domain event: failure is logged only

No lock is held around the aggregate read-modify-write; concurrent runs
for the same key both execute and the last write wins.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import redis
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ledger_history.core.redis import EventBus
from ledger_history.models import (
    AggregateState,
    HistoryAggregate,
    InconsistencySeverity,
    VerificationResult,
    VerifiedEvent,
)
from ledger_history.schemas.history import VerifiedEventRead
from ledger_history.schemas.messages import (
    HISTORY_INCONSISTENCY,
    HISTORY_RECONSTRUCTED,
    HistoryReconstructedEvent,
    InconsistencyDetail,
    InconsistencyEvent,
)
from ledger_history.schemas.task import InconsistencyRead
from ledger_history.services.reconciliation.errors import (
    EventNotFoundError,
    NoEventsError,
    PersistError,
    PublishError,
    StoreError,
    VerificationError,
)
from ledger_history.services.reconciliation.state import derive_state
from ledger_history.services.reconciliation.store import HistoryStore
from ledger_history.services.reconciliation.synchronizer import LedgerSynchronizer
from ledger_history.services.reconciliation.verifier import LedgerVerifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FRESHNESS_WINDOW = timedelta(hours=1)

STATE_SEVERITY = {
    AggregateState.INCONSISTENTE.value: InconsistencySeverity.CRITICAL,
    AggregateState.PARTIAL.value: InconsistencySeverity.ERROR,
    AggregateState.CONFORME.value: InconsistencySeverity.WARNING,
}


def paginate(items: Sequence[T], page: int, limit: int) -> list[T]:
    """1-indexed page of ``items``; past the end is an empty list."""
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    if start >= len(items):
        return []
    return list(items[start:start + limit])


def matches_lot(event: VerifiedEvent, lot: str) -> bool:
    """Events that carry no lot field belong to every lot."""
    if not lot:
        return True
    event_lot = (event.payload or {}).get("lot")
    if not isinstance(event_lot, str):
        return True
    return event_lot == lot


class ReconciliationService:
    def __init__(
        self,
        store: HistoryStore,
        synchronizer: LedgerSynchronizer,
        verifier: LedgerVerifier,
        publisher: EventBus | None,
        strict_verification: bool = True,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.verifier = verifier
        self.publisher = publisher
        self.strict_verification = strict_verification
        self.freshness_window = freshness_window
        self._clock = clock

    def reconcile(self, product_id: str, lot: str = "", force: bool = False) -> HistoryAggregate:
        """
        Rebuild the history aggregate of a product (and lot).

        Raises:
            StoreError: Existing aggregate or events could not be read.
            SyncError: Ledger-state table could not be read.
            NoEventsError: No verified events for the product.
            PersistError: Aggregate could not be written.
        """
        lot = lot or ""
        logger.info("Reconciliation started: %s (lot=%r, force=%s)", product_id, lot, force)

        # 1. Freshness check
        if not force:
            existing = self.get_aggregate(product_id, lot)
            if existing is not None and self._clock() - existing.last_checked_at < self.freshness_window:
                logger.info("Recent aggregate found for %s (lot=%r), returning as-is", product_id, lot)
                return existing

        # 2. Pull ledger-side events (SyncError propagates)
        self.synchronizer.sync_product(product_id)

        # 3. Load everything we know about the product
        try:
            events = self.store.list_events(product_id)
        except SQLAlchemyError as e:
            raise StoreError(
                f"Cannot load events for product {product_id}: {e}",
                details={"product_id": product_id},
            ) from e

        if not events:
            raise NoEventsError(
                f"No events found for product {product_id}",
                details={"product_id": product_id},
            )

        # 4-5. Filter and verify
        verified: list[VerifiedEvent] = []
        inconsistencies: list[InconsistencyDetail] = []

        for event in events:
            if not matches_lot(event, lot):
                continue

            if self.strict_verification:
                if event.ledger_reference:
                    try:
                        self.verifier.verify(event)
                    except VerificationError as e:
                        logger.warning("Verification of event %s failed: %s", event.event_id, e)
                        inconsistencies.append(
                            InconsistencyDetail(
                                event_id=event.event_id,
                                error=event.verification_result,
                            )
                        )
                    self._save_verification(event)
            else:
                event.verification_result = VerificationResult.OK.value

            verified.append(event)

        # 6. Derive state and persist
        state = derive_state(verified)
        aggregate = self._build_aggregate(product_id, lot, state, verified, inconsistencies)

        try:
            self.store.save_aggregate(aggregate)
        except SQLAlchemyError as e:
            raise PersistError(
                f"Cannot save aggregate for product {product_id}: {e}",
                details={"product_id": product_id, "lot": lot},
            ) from e

        # 7. Exactly one domain event
        if not inconsistencies:
            self._publish(
                HISTORY_RECONSTRUCTED,
                HistoryReconstructedEvent(
                    product_id=product_id,
                    lot=lot,
                    state=state.value,
                    verified_events=[VerifiedEventRead.model_validate(e) for e in verified],
                ),
            )
        else:
            self._publish(
                HISTORY_INCONSISTENCY,
                InconsistencyEvent(product_id=product_id, lot=lot, details=inconsistencies),
            )

        logger.info(
            "Reconciliation finished: %s (lot=%r, state=%s, inconsistencies=%d)",
            product_id,
            lot,
            state.value,
            len(inconsistencies),
        )
        return aggregate

    def _build_aggregate(
        self,
        product_id: str,
        lot: str,
        state: AggregateState,
        events: list[VerifiedEvent],
        inconsistencies: list[InconsistencyDetail],
    ) -> HistoryAggregate:
        now = self._clock()
        conforming = sum(
            1 for e in events if e.verification_result == VerificationResult.OK.value
        )

        # First event wins, not the most recent one
        first_payload: dict[str, Any] = (events[0].payload or {}) if events else {}

        return HistoryAggregate(
            product_id=product_id,
            lot=lot,
            product_name=_as_text(first_payload.get("product_name")),
            manufacturer=_as_text(first_payload.get("manufacturer")),
            current_state=state.value,
            ledger_validated=self.strict_verification and not inconsistencies,
            last_checked_at=now,
            metadata_json={
                "lot": lot,
                "total_events": str(len(events)),
                "conforming_events": str(conforming),
                "inconsistencies": str(len(inconsistencies)),
                "strict_verification": str(self.strict_verification).lower(),
            },
            created_at=now,
            updated_at=now,
        )

    def _save_verification(self, event: VerifiedEvent) -> None:
        try:
            self.store.update_verification(event)
        except SQLAlchemyError:
            logger.warning(
                "Could not save verification result of event %s",
                event.event_id,
                exc_info=True,
            )

    def _publish(self, event_type: str, message: BaseModel) -> None:
        """Best-effort delivery: failures are logged, never raised or retried."""
        if self.publisher is None:
            logger.warning("No event bus configured; %s not published", event_type)
            return
        try:
            self.publisher.publish_domain_event(event_type, message.model_dump(mode="json"))
        except redis.RedisError as e:
            error = PublishError(
                f"Cannot publish {event_type}: {e}",
                details={"event_type": event_type},
            )
            logger.warning("%s (%s)", error.message, error.code)

    # =========================================================
    # BOUNDARY OPERATIONS
    # =========================================================

    def get_aggregate(self, product_id: str, lot: str = "") -> HistoryAggregate | None:
        try:
            return self.store.get_aggregate(product_id, lot or "")
        except SQLAlchemyError as e:
            raise StoreError(
                f"Cannot load aggregate for product {product_id}: {e}",
                details={"product_id": product_id, "lot": lot},
            ) from e

    def verify_event(self, product_id: str, event_id: str) -> VerifiedEvent:
        """
        Re-verify one stored event and save the outcome.

        Raises:
            EventNotFoundError: Unknown (product_id, event_id).
        """
        try:
            event = self.store.get_event(product_id, event_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot load event {event_id}: {e}") from e

        if event is None:
            raise EventNotFoundError(
                f"Event {event_id} not found for product {product_id}",
                details={"product_id": product_id, "event_id": event_id},
            )

        if event.ledger_reference:
            try:
                self.verifier.verify(event)
            except VerificationError as e:
                logger.warning("Verification of event %s failed: %s", event_id, e)
            self._save_verification(event)

        return event

    def list_events(
        self,
        product_id: str,
        event_type: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> list[VerifiedEvent]:
        try:
            events = self.store.list_events(product_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot load events for product {product_id}: {e}") from e

        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return paginate(events, page, limit)

    def list_inconsistencies(
        self,
        severity: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[InconsistencyRead]:
        """One record per aggregate that is not ledger-validated."""
        try:
            aggregates = self.store.list_unvalidated_aggregates()
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot scan aggregates: {e}") from e

        records = [to_inconsistency(a) for a in aggregates]
        if severity:
            records = [r for r in records if r.severity == severity]
        return paginate(records, page, limit)


def to_inconsistency(aggregate: HistoryAggregate) -> InconsistencyRead:
    severity = STATE_SEVERITY.get(aggregate.current_state, InconsistencySeverity.ERROR)
    record_id = f"INC_{aggregate.product_id}"
    if aggregate.lot:
        record_id = f"{record_id}_{aggregate.lot}"

    return InconsistencyRead(
        id=record_id,
        product_id=aggregate.product_id,
        lot=aggregate.lot or "",
        severity=severity.value,
        description=f"Ledger validation failed (state: {aggregate.current_state})",
        detected_at=aggregate.updated_at,
    )


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""
