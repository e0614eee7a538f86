"""
verified_event.py - Verified event storage model.

GUARANTEES:
1. (product_id, event_id) is the identity; inserts are conditional
   (ON CONFLICT DO NOTHING), a second insert is a no-op
2. Rows are never deleted
3. Only verification_result and notes change after creation
"""

from sqlalchemy import JSON, Column, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from ledger_history.database import Base, UTCDateTime
from ledger_history.models.enums import VerificationResult


class VerifiedEvent(Base):
    """
    One lifecycle event of a product, as recorded locally.

    Written by the stream ingestor or the ledger synchronizer, whichever sees
    the event first. The verifier owns the verification fields.
    """

    __tablename__ = "verified_events"

    product_id = Column(String(128), primary_key=True)
    event_id = Column(String(128), primary_key=True)

    event_type = Column(String(64), nullable=False, default="")
    occurred_at = Column(UTCDateTime(), nullable=False)
    location = Column(String(255), nullable=False, default="")

    # Open JSON object; arbitrary source-supplied fields are preserved
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    content_hash = Column(String(128), nullable=False, default="")
    ledger_reference = Column(String(255), nullable=False, default="")

    verification_result = Column(
        String(20), nullable=False, default=VerificationResult.OK.value
    )
    notes = Column(Text, nullable=False, default="")
    raw_payload = Column(Text, nullable=False, default="")
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_verified_events_product_occurred", "product_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerifiedEvent {self.product_id}/{self.event_id} "
            f"{self.verification_result}>"
        )
