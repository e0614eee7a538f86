"""
store.py - Persistence for verified events, aggregates and tasks.

GUARANTEES:
- insert_event_if_absent is an atomic conditional insert
  (INSERT ... ON CONFLICT DO NOTHING); it never overwrites
- save_aggregate overwrites the whole row (last writer wins)
- finish_task only moves a task out of 'processing' once

One session per operation, so a store instance can be shared between
threads. SQLAlchemy errors propagate; callers decide what is fatal.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ledger_history.models import (
    HistoryAggregate,
    LedgerSourceEvent,
    ReconciliationTask,
    TaskStatus,
    VerifiedEvent,
)
from ledger_history.services.reconciliation.errors import StoreError

logger = logging.getLogger(__name__)


def _column_values(row: Any) -> dict[str, Any]:
    """Column values of an ORM instance, leaving unset columns to their defaults."""
    values = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if value is not None:
            values[column.key] = value
    return values


class HistoryStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    # =========================================================
    # VERIFIED EVENTS
    # =========================================================

    def insert_event_if_absent(self, event: VerifiedEvent) -> bool:
        """
        Insert ``event`` unless (product_id, event_id) already exists.

        Returns:
            True if a row was written, False if it was a duplicate.
        """
        if event.created_at is None:
            event.created_at = datetime.now(UTC)
        values = _column_values(event)

        with self._session_factory() as db:
            dialect = db.get_bind().dialect.name
            if dialect == "postgresql":
                stmt = pg_insert(VerifiedEvent).values(**values)
            elif dialect == "sqlite":
                stmt = sqlite_insert(VerifiedEvent).values(**values)
            else:
                raise StoreError(
                    f"Conditional insert not supported on {dialect}",
                    details={"dialect": dialect},
                )

            stmt = stmt.on_conflict_do_nothing(index_elements=["product_id", "event_id"])
            inserted = db.execute(stmt).rowcount > 0
            db.commit()

        if inserted:
            logger.info("Event stored: %s/%s", event.product_id, event.event_id)
        else:
            logger.info(
                "Event already stored (idempotent): %s/%s",
                event.product_id,
                event.event_id,
            )
        return inserted

    def event_exists(self, product_id: str, event_id: str) -> bool:
        with self._session_factory() as db:
            stmt = select(VerifiedEvent.event_id).where(
                VerifiedEvent.product_id == product_id,
                VerifiedEvent.event_id == event_id,
            )
            return db.execute(stmt).first() is not None

    def get_event(self, product_id: str, event_id: str) -> VerifiedEvent | None:
        with self._session_factory() as db:
            return db.get(VerifiedEvent, (product_id, event_id))

    def list_events(self, product_id: str) -> list[VerifiedEvent]:
        """All events of a product, oldest first."""
        with self._session_factory() as db:
            stmt = (
                select(VerifiedEvent)
                .where(VerifiedEvent.product_id == product_id)
                .order_by(VerifiedEvent.occurred_at, VerifiedEvent.event_id)
            )
            return list(db.execute(stmt).scalars())

    def update_verification(self, event: VerifiedEvent) -> None:
        """Write back the verifier-owned fields. Nothing else is ever updated."""
        with self._session_factory() as db:
            db.execute(
                update(VerifiedEvent)
                .where(
                    VerifiedEvent.product_id == event.product_id,
                    VerifiedEvent.event_id == event.event_id,
                )
                .values(
                    verification_result=event.verification_result,
                    notes=event.notes or "",
                )
            )
            db.commit()

    # =========================================================
    # LEDGER SOURCE EVENTS (read-only)
    # =========================================================

    def list_ledger_source_events(self, product_id: str) -> list[LedgerSourceEvent]:
        with self._session_factory() as db:
            stmt = select(LedgerSourceEvent).where(LedgerSourceEvent.product_id == product_id)
            return list(db.execute(stmt).scalars())

    # =========================================================
    # AGGREGATES
    # =========================================================

    def get_aggregate(self, product_id: str, lot: str = "") -> HistoryAggregate | None:
        with self._session_factory() as db:
            return db.get(HistoryAggregate, (product_id, lot or ""))

    def save_aggregate(self, aggregate: HistoryAggregate) -> None:
        """Overwrite the aggregate row; the first created_at is kept."""
        with self._session_factory() as db:
            existing = db.get(HistoryAggregate, (aggregate.product_id, aggregate.lot or ""))
            if existing is not None:
                aggregate.created_at = existing.created_at
            db.merge(aggregate)
            db.commit()

        logger.info(
            "Aggregate saved: %s (lot=%r, state=%s)",
            aggregate.product_id,
            aggregate.lot,
            aggregate.current_state,
        )

    def list_unvalidated_aggregates(self) -> list[HistoryAggregate]:
        with self._session_factory() as db:
            stmt = (
                select(HistoryAggregate)
                .where(HistoryAggregate.ledger_validated.is_(False))
                .order_by(HistoryAggregate.updated_at.desc(), HistoryAggregate.product_id)
            )
            return list(db.execute(stmt).scalars())

    # =========================================================
    # TASKS
    # =========================================================

    def create_task(self, task: ReconciliationTask) -> None:
        with self._session_factory() as db:
            db.add(task)
            db.commit()

    def get_task(self, task_id: str) -> ReconciliationTask | None:
        with self._session_factory() as db:
            return db.get(ReconciliationTask, task_id)

    def finish_task(
        self,
        task_id: str,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Move a processing task to a terminal status.

        Returns:
            False if the task was not in 'processing' (already finished or unknown).
        """
        with self._session_factory() as db:
            finished = db.execute(
                update(ReconciliationTask)
                .where(
                    ReconciliationTask.task_id == task_id,
                    ReconciliationTask.status == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=status.value,
                    result=result,
                    error=error,
                    updated_at=datetime.now(UTC),
                )
            ).rowcount > 0
            db.commit()
        return finished
