from sqlalchemy import Column, String, Text

from ledger_history.database import Base, UTCDateTime
from ledger_history.models.enums import TaskStatus


class ReconciliationTask(Base):
    """
    Lifecycle record of an asynchronous reconciliation run.

    Moves exactly once from processing to completed or failed. result is
    only set on completed, error only on failed.
    """

    __tablename__ = "reconciliation_tasks"

    task_id = Column(String(36), primary_key=True)
    status = Column(String(20), nullable=False, default=TaskStatus.PROCESSING.value)
    product_id = Column(String(128), nullable=False, index=True)
    lot = Column(String(128), nullable=False, default="")
    result = Column(Text, nullable=True)  # Serialized HistoryAggregate
    error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)
