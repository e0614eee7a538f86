"""
messages.py - Bus message schemas.

Inbound: TransactionNotification (ledger bridge → stream worker).
Outbound: HistoryReconstructedEvent and InconsistencyEvent (one per
reconciliation run).
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ledger_history.schemas.history import VerifiedEventRead

SCHEMA_VERSION = "1.0"

HISTORY_RECONSTRUCTED = "event.history.reconstructed"
HISTORY_INCONSISTENCY = "event.history.inconsistency"


class TransactionNotification(BaseModel):
    """
    Ledger transaction notification (untrusted).

    Accepts snake_case or camelCase keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: str = SCHEMA_VERSION
    event_id: str = Field(..., min_length=1)
    event_type: str
    product_id: str = Field(..., min_length=1)
    lot: str = ""
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
    content_hash: str = ""
    ledger_address: str = ""
    emitting_actor: str = ""
    digital_signature: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class InconsistencyDetail(BaseModel):
    event_id: str
    error: str


def _correlation_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class HistoryReconstructedEvent(BaseModel):
    schema_version: str = SCHEMA_VERSION
    product_id: str
    lot: str = ""
    state: str
    verified_events: list[VerifiedEventRead]
    timestamp: datetime = Field(default_factory=_now)
    correlation_id: str = Field(default_factory=_correlation_id)


class InconsistencyEvent(BaseModel):
    schema_version: str = SCHEMA_VERSION
    product_id: str
    lot: str = ""
    details: list[InconsistencyDetail]
    timestamp: datetime = Field(default_factory=_now)
    correlation_id: str = Field(default_factory=_correlation_id)
