from sqlalchemy import JSON, Boolean, Column, String

from ledger_history.database import Base, UTCDateTime


class HistoryAggregate(Base):
    """
    Authoritative history record of a product.

    Keyed on (product_id, lot); lot "" is the all-lots history. Each
    reconciliation run overwrites the row wholesale.
    """

    __tablename__ = "history_aggregates"

    product_id = Column(String(128), primary_key=True)
    lot = Column(String(128), primary_key=True, default="")

    product_name = Column(String(255), nullable=False, default="")
    manufacturer = Column(String(255), nullable=False, default="")
    current_state = Column(String(20), nullable=False, index=True)
    ledger_validated = Column(Boolean, nullable=False, default=False, index=True)
    last_checked_at = Column(UTCDateTime(), nullable=False)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)
