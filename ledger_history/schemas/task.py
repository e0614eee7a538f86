"""
task.py - Schemas for async reconciliation tasks and derived inconsistencies.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ledger_history.schemas.history import Pagination


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    status: str = Field(..., description="processing | completed | failed")
    product_id: str
    lot: str = ""
    result: str | None = Field(None, description="Serialized aggregate (completed only)")
    error: str | None = Field(None, description="Failure message (failed only)")
    created_at: datetime
    updated_at: datetime


class InconsistencyRead(BaseModel):
    """Derived from an aggregate that is not ledger-validated. Never persisted."""

    id: str
    product_id: str
    lot: str = ""
    event_id: str = ""
    type: str = "VALIDATION_FAILED"
    severity: str = Field(..., description="WARNING | ERROR | CRITICAL")
    description: str
    detected_at: datetime
    resolved: bool = False


class InconsistencyListResponse(BaseModel):
    inconsistencies: list[InconsistencyRead]
    pagination: Pagination
    filters: dict[str, str | None]
