"""
ledger_source_event.py - Ledger-state table (foreign read model).

Rows are written by the ledger bridge, not by this service. Column
contents are untrusted: occurred_at comes in several timestamp encodings and
payload is a JSON-encoded string that may not parse.
"""

from sqlalchemy import Column, String, Text

from ledger_history.database import Base


class LedgerSourceEvent(Base):
    __tablename__ = "ledger_source_events"

    transaction_id = Column(String(128), primary_key=True)
    product_id = Column(String(128), nullable=False, index=True)
    event_type = Column(String(64), nullable=False, default="")
    occurred_at = Column(String(64), nullable=False, default="")
    payload = Column(Text, nullable=False, default="")
    content_hash = Column(String(128), nullable=False, default="")
    ledger_address = Column(String(255), nullable=False, default="")
    emitting_actor = Column(String(255), nullable=False, default="")
    ledger_status = Column(String(64), nullable=False, default="")  # pendiente/confirmado/echec/failed
    storage_reference = Column(String(255), nullable=False, default="")
