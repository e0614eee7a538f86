"""
history.py - Product history API endpoints.

Reconciliation errors are not caught here; the application-level handler
maps them to status codes (see ledger_history.main).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ledger_history.schemas.history import (
    EventListResponse,
    HistoryAggregateRead,
    Pagination,
    ReconstructRequest,
    ReconstructResponse,
    VerifiedEventRead,
)
from ledger_history.schemas.task import InconsistencyListResponse, TaskRead
from ledger_history.services.reconciliation.factory import (
    get_reconciliation_service,
    get_task_runner,
)
from ledger_history.services.reconciliation.service import ReconciliationService
from ledger_history.services.reconciliation.tasks import ReconciliationTaskRunner

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_EVENTS_LIMIT = 10
DEFAULT_INCONSISTENCIES_LIMIT = 50


def parse_positive_int(value: str | None, default: int) -> int:
    """Query value as a positive int; anything else yields ``default``."""
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError:
        return default
    return number if number > 0 else default


def is_truthy(value: str | None) -> bool:
    return (value or "").lower() in ("true", "1")


@router.post("/reconstruct", response_model=ReconstructResponse)
def reconstruct_history(
    request: ReconstructRequest,
    run_async: str | None = Query(None, alias="async"),
    service: ReconciliationService = Depends(get_reconciliation_service),
    runner: ReconciliationTaskRunner = Depends(get_task_runner),
):
    """
    Rebuild a product history.

    Synchronous by default (200 with the aggregate). With ``async=true``
    the run is queued and 202 is returned with a task id to poll.
    """
    if is_truthy(run_async):
        task_id = runner.submit(request.product_id, request.lot, request.force)
        body = ReconstructResponse(status="processing", task_id=task_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(mode="json"),
        )

    aggregate = service.reconcile(request.product_id, request.lot, request.force)
    return ReconstructResponse(
        status="completed",
        data=HistoryAggregateRead.model_validate(aggregate),
    )


@router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(
    task_id: str,
    runner: ReconciliationTaskRunner = Depends(get_task_runner),
):
    task = runner.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@router.get("/inconsistencies", response_model=InconsistencyListResponse)
def list_inconsistencies(
    severity: str | None = None,
    page: str | None = None,
    limit: str | None = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    page_number = parse_positive_int(page, 1)
    page_size = parse_positive_int(limit, DEFAULT_INCONSISTENCIES_LIMIT)

    records = service.list_inconsistencies(severity, page_number, page_size)
    return InconsistencyListResponse(
        inconsistencies=records,
        pagination=Pagination(page=page_number, limit=page_size, total=len(records)),
        filters={"severity": severity},
    )


@router.get("/{product_id}", response_model=HistoryAggregateRead)
def get_history(
    product_id: str,
    lot: str = "",
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    aggregate = service.get_aggregate(product_id, lot)
    if aggregate is None:
        raise HTTPException(
            status_code=404, detail=f"History for product {product_id} not found"
        )
    return aggregate


@router.get("/{product_id}/verify/{event_id}", response_model=VerifiedEventRead)
def verify_event(
    product_id: str,
    event_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return service.verify_event(product_id, event_id)


@router.get("/{product_id}/events", response_model=EventListResponse)
def list_events(
    product_id: str,
    event_type: str | None = None,
    page: str | None = None,
    limit: str | None = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    page_number = parse_positive_int(page, 1)
    page_size = parse_positive_int(limit, DEFAULT_EVENTS_LIMIT)

    events = service.list_events(product_id, event_type, page_number, page_size)
    return EventListResponse(
        events=[VerifiedEventRead.model_validate(e) for e in events],
        pagination=Pagination(page=page_number, limit=page_size, total=len(events)),
    )
