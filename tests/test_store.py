"""
test_store.py - Persistence guarantees.

1. Conditional insert never overwrites
2. Aggregates are overwritten wholesale, first created_at kept
3. Tasks leave 'processing' exactly once
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from ledger_history.models import (
    AggregateState,
    HistoryAggregate,
    ReconciliationTask,
    TaskStatus,
    VerificationResult,
)
from ledger_history.services.reconciliation.errors import StoreError
from ledger_history.services.reconciliation.store import HistoryStore

from conftest import BASE_TIME, make_event


def _aggregate(state=AggregateState.CONFORME, validated=True, at=BASE_TIME, lot=""):
    return HistoryAggregate(
        product_id="prod-1",
        lot=lot,
        product_name="Coffee",
        manufacturer="Acme",
        current_state=state.value,
        ledger_validated=validated,
        last_checked_at=at,
        metadata_json={"total_events": "1"},
        created_at=at,
        updated_at=at,
    )


class TestVerifiedEvents:
    def test_insert_then_duplicate(self, store):
        assert store.insert_event_if_absent(make_event()) is True
        assert store.insert_event_if_absent(make_event()) is False
        assert len(store.list_events("prod-1")) == 1

    def test_duplicate_keeps_first_verification_fields(self, store):
        store.insert_event_if_absent(
            make_event(verification_result=VerificationResult.PENDING.value)
        )
        store.insert_event_if_absent(make_event())

        stored = store.get_event("prod-1", "evt-1")
        assert stored.verification_result == VerificationResult.PENDING.value

    def test_unsupported_dialect(self):
        session_factory = MagicMock()
        db = session_factory.return_value.__enter__.return_value
        db.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(StoreError) as exc:
            HistoryStore(session_factory).insert_event_if_absent(make_event())
        assert exc.value.details == {"dialect": "mysql"}
        db.execute.assert_not_called()

    def test_same_event_id_other_product(self, store):
        store.insert_event_if_absent(make_event(product_id="prod-1"))
        store.insert_event_if_absent(make_event(product_id="prod-2"))

        assert store.event_exists("prod-1", "evt-1")
        assert store.event_exists("prod-2", "evt-1")

    def test_list_ordered_by_occurred_at(self, store):
        store.insert_event_if_absent(make_event(event_id="late", offset_minutes=10))
        store.insert_event_if_absent(make_event(event_id="early", offset_minutes=0))

        assert [e.event_id for e in store.list_events("prod-1")] == ["early", "late"]

    def test_occurred_at_round_trips_as_utc(self, store):
        store.insert_event_if_absent(make_event())
        assert store.get_event("prod-1", "evt-1").occurred_at == BASE_TIME

    def test_update_verification_only_touches_verifier_fields(self, store):
        store.insert_event_if_absent(make_event())
        event = store.get_event("prod-1", "evt-1")
        event.verification_result = VerificationResult.HASH_MISMATCH.value
        event.notes = "Hash mismatch"
        event.location = "elsewhere"

        store.update_verification(event)

        stored = store.get_event("prod-1", "evt-1")
        assert stored.verification_result == VerificationResult.HASH_MISMATCH.value
        assert stored.notes == "Hash mismatch"
        assert stored.location == "farm-1"


class TestAggregates:
    def test_missing(self, store):
        assert store.get_aggregate("prod-1") is None

    def test_overwrite_keeps_created_at(self, store):
        store.save_aggregate(_aggregate())
        later = BASE_TIME + timedelta(hours=2)
        store.save_aggregate(_aggregate(AggregateState.PARTIAL, False, at=later))

        stored = store.get_aggregate("prod-1")
        assert stored.current_state == AggregateState.PARTIAL.value
        assert stored.last_checked_at == later
        assert stored.created_at == BASE_TIME

    def test_lots_are_separate_rows(self, store):
        store.save_aggregate(_aggregate(lot=""))
        store.save_aggregate(_aggregate(AggregateState.PARTIAL, False, lot="L1"))

        assert store.get_aggregate("prod-1").current_state == AggregateState.CONFORME.value
        assert store.get_aggregate("prod-1", "L1").current_state == AggregateState.PARTIAL.value

    def test_unvalidated_listing(self, store):
        store.save_aggregate(_aggregate(lot=""))
        store.save_aggregate(_aggregate(AggregateState.PARTIAL, False, lot="L1"))

        unvalidated = store.list_unvalidated_aggregates()
        assert [(a.product_id, a.lot) for a in unvalidated] == [("prod-1", "L1")]


class TestTasks:
    def _task(self):
        return ReconciliationTask(
            task_id="task-1",
            status=TaskStatus.PROCESSING.value,
            product_id="prod-1",
            lot="",
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )

    def test_finish_once(self, store):
        store.create_task(self._task())

        assert store.finish_task("task-1", TaskStatus.COMPLETED, result="{}") is True
        assert store.finish_task("task-1", TaskStatus.FAILED, error="late") is False

        task = store.get_task("task-1")
        assert task.status == TaskStatus.COMPLETED.value
        assert task.result == "{}"
        assert task.error is None

    def test_unknown_task(self, store):
        assert store.get_task("nope") is None
        assert store.finish_task("nope", TaskStatus.FAILED, error="x") is False
