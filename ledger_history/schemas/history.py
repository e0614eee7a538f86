"""
history.py - Pydantic schemas for history aggregates and verified events.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VerifiedEventRead(BaseModel):
    """Read-only verified event."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str
    event_id: str
    event_type: str
    occurred_at: datetime
    location: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    content_hash: str = ""
    ledger_reference: str = ""
    verification_result: str
    notes: str = ""
    raw_payload: str = ""
    created_at: datetime


class HistoryAggregateRead(BaseModel):
    """Authoritative history of a product (and lot)."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str
    lot: str = ""
    product_name: str = ""
    manufacturer: str = ""
    current_state: str = Field(..., description="Conforme | Inconsistente | Partial")
    ledger_validated: bool
    last_checked_at: datetime
    metadata: dict[str, str] = Field(
        default_factory=dict, validation_alias="metadata_json"
    )
    created_at: datetime
    updated_at: datetime


class ReconstructRequest(BaseModel):
    product_id: str = Field(..., min_length=1, description="Product identifier")
    lot: str = Field("", description="Lot/batch filter; empty means all lots")
    force: bool = Field(False, description="Skip the freshness check")


class ReconstructResponse(BaseModel):
    status: str = Field(..., description="completed | processing")
    task_id: str | None = None
    data: HistoryAggregateRead | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int = Field(..., description="Number of items in this page")


class EventListResponse(BaseModel):
    events: list[VerifiedEventRead]
    pagination: Pagination
