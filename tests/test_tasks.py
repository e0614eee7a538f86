"""
test_tasks.py - Async reconciliation runs.

1. Task recorded as processing before the run starts
2. Completed tasks carry the serialized aggregate, failed ones the error
3. Concurrent requests for the same key share one run, unless a forced
   request would join a non-forced one
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from ledger_history.models import AggregateState, HistoryAggregate, TaskStatus
from ledger_history.services.reconciliation.errors import NoEventsError
from ledger_history.services.reconciliation.tasks import ReconciliationTaskRunner

from conftest import BASE_TIME


def _aggregate(product_id="prod-1", lot=""):
    return HistoryAggregate(
        product_id=product_id,
        lot=lot,
        product_name="Coffee",
        manufacturer="Acme",
        current_state=AggregateState.CONFORME.value,
        ledger_validated=True,
        last_checked_at=BASE_TIME,
        metadata_json={"total_events": "3"},
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )


@pytest.fixture
def service(store):
    service = MagicMock()
    service.store = store
    service.reconcile = MagicMock(side_effect=lambda product_id, lot, force: _aggregate(product_id, lot))
    return service


@pytest.fixture
def runner(service):
    runner = ReconciliationTaskRunner(service, max_workers=2)
    yield runner
    runner.shutdown(wait=True)


class TestSubmit:
    def test_completed_task_carries_aggregate(self, runner, service, store):
        task_id = runner.submit("prod-1", "", force=True)
        runner.shutdown(wait=True)

        task = store.get_task(task_id)
        assert task.status == TaskStatus.COMPLETED.value
        assert task.error is None
        result = json.loads(task.result)
        assert result["product_id"] == "prod-1"
        assert result["current_state"] == AggregateState.CONFORME.value
        assert result["metadata"] == {"total_events": "3"}
        service.reconcile.assert_called_once_with("prod-1", "", True)

    def test_failed_task_carries_error(self, runner, service, store):
        service.reconcile.side_effect = NoEventsError("No events found for product ghost")

        task_id = runner.submit("ghost")
        runner.shutdown(wait=True)

        task = store.get_task(task_id)
        assert task.status == TaskStatus.FAILED.value
        assert task.result is None
        assert task.error == "No events found for product ghost"

    def test_task_visible_while_processing(self, runner, service, store):
        gate = threading.Event()

        def slow(product_id, lot, force):
            gate.wait(5)
            return _aggregate(product_id, lot)

        service.reconcile.side_effect = slow

        task_id = runner.submit("prod-1")
        assert runner.get_task(task_id).status == TaskStatus.PROCESSING.value

        gate.set()
        runner.shutdown(wait=True)
        assert runner.get_task(task_id).status == TaskStatus.COMPLETED.value

    def test_unknown_task(self, runner):
        assert runner.get_task("missing") is None


class TestSingleFlight:
    def test_same_key_shares_one_run(self, runner, service, store):
        gate = threading.Event()

        def slow(product_id, lot, force):
            gate.wait(5)
            return _aggregate(product_id, lot)

        service.reconcile.side_effect = slow

        first = runner.submit("prod-1", "L1")
        second = runner.submit("prod-1", "L1")
        assert first != second
        assert runner.in_flight() == 1

        gate.set()
        runner.shutdown(wait=True)

        assert service.reconcile.call_count == 1
        first_task = store.get_task(first)
        second_task = store.get_task(second)
        assert first_task.status == second_task.status == TaskStatus.COMPLETED.value
        assert first_task.result == second_task.result
        assert runner.in_flight() == 0

    def test_different_keys_run_separately(self, runner, service):
        gate = threading.Event()

        def slow(product_id, lot, force):
            gate.wait(5)
            return _aggregate(product_id, lot)

        service.reconcile.side_effect = slow

        runner.submit("prod-1", "L1")
        runner.submit("prod-1", "L2")
        assert runner.in_flight() == 2

        gate.set()
        runner.shutdown(wait=True)
        assert service.reconcile.call_count == 2


    def test_forced_request_starts_its_own_run(self, runner, service):
        gate = threading.Event()

        def slow(product_id, lot, force):
            gate.wait(5)
            return _aggregate(product_id, lot)

        service.reconcile.side_effect = slow

        runner.submit("prod-1", "L1")
        runner.submit("prod-1", "L1", force=True)
        assert runner.in_flight() == 2

        gate.set()
        runner.shutdown(wait=True)
        assert sorted(call.args[2] for call in service.reconcile.call_args_list) == [False, True]

    def test_plain_request_joins_forced_run(self, runner, service, store):
        gate = threading.Event()

        def slow(product_id, lot, force):
            gate.wait(5)
            return _aggregate(product_id, lot)

        service.reconcile.side_effect = slow

        forced = runner.submit("prod-1", "L1", force=True)
        plain = runner.submit("prod-1", "L1")
        assert runner.in_flight() == 1

        gate.set()
        runner.shutdown(wait=True)
        service.reconcile.assert_called_once_with("prod-1", "L1", True)
        assert store.get_task(forced).result == store.get_task(plain).result
