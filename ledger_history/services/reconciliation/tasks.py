"""
tasks.py - Asynchronous reconciliation runs.

Runs execute on a bounded thread pool, detached from the request that
started them. The task record is the only synchronization point with the
caller: it is written as 'processing' before the run is submitted and is
finished exactly once by the completion callback.

SINGLE-FLIGHT: while a run for (product_id, lot) is in flight, further
requests for the same key get their own task id but attach to that run
and share its outcome. A forced request only attaches to a forced run.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from ledger_history.models import HistoryAggregate, ReconciliationTask, TaskStatus
from ledger_history.schemas.history import HistoryAggregateRead
from ledger_history.services.reconciliation.errors import StoreError
from ledger_history.services.reconciliation.service import ReconciliationService

logger = logging.getLogger(__name__)


class ReconciliationTaskRunner:
    def __init__(self, service: ReconciliationService, max_workers: int = 4):
        self.service = service
        self.store = service.store
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="reconcile",
        )
        self._lock = threading.Lock()
        self._inflight: dict[tuple[str, str, bool], Future] = {}

    def submit(self, product_id: str, lot: str = "", force: bool = False) -> str:
        """
        Start (or join) a reconciliation and return its task id immediately.

        Raises:
            StoreError: The task record could not be written.
        """
        lot = lot or ""
        task_id = str(uuid.uuid4())
        now = datetime.now(UTC)

        try:
            self.store.create_task(
                ReconciliationTask(
                    task_id=task_id,
                    status=TaskStatus.PROCESSING.value,
                    product_id=product_id,
                    lot=lot,
                    created_at=now,
                    updated_at=now,
                )
            )
        except SQLAlchemyError as e:
            raise StoreError(
                f"Cannot create task for product {product_id}: {e}",
                details={"product_id": product_id, "lot": lot},
            ) from e

        key = (product_id, lot, force)
        with self._lock:
            future = self._joinable(product_id, lot, force)
            if future is None:
                future = self._executor.submit(self.service.reconcile, product_id, lot, force)
                self._inflight[key] = future
                future.add_done_callback(lambda f: self._release(key, f))
                logger.info("Task %s started reconciliation of %s (lot=%r)", task_id, product_id, lot)
            else:
                logger.info("Task %s joined in-flight reconciliation of %s (lot=%r)", task_id, product_id, lot)

        future.add_done_callback(lambda f: self._finish(task_id, f))
        return task_id

    def get_task(self, task_id: str) -> ReconciliationTask | None:
        try:
            return self.store.get_task(task_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot load task {task_id}: {e}") from e

    def _joinable(self, product_id: str, lot: str, force: bool) -> Future | None:
        future = self._inflight.get((product_id, lot, True))
        if future is None and not force:
            future = self._inflight.get((product_id, lot, False))
        return future

    def in_flight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def _release(self, key: tuple[str, str, bool], future: Future) -> None:
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    def _finish(self, task_id: str, future: Future) -> None:
        error = future.exception()
        try:
            if error is not None:
                logger.warning("Task %s failed: %s", task_id, error)
                finished = self.store.finish_task(task_id, TaskStatus.FAILED, error=str(error))
            else:
                finished = self.store.finish_task(
                    task_id,
                    TaskStatus.COMPLETED,
                    result=serialize_aggregate(future.result()),
                )
                logger.info("Task %s completed", task_id)
        except SQLAlchemyError:
            logger.exception("Could not record outcome of task %s", task_id)
            return

        if not finished:
            logger.warning("Task %s was not processing; outcome dropped", task_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def serialize_aggregate(aggregate: HistoryAggregate) -> str:
    return HistoryAggregateRead.model_validate(aggregate).model_dump_json()
