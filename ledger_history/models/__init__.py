from .enums import AggregateState, InconsistencySeverity, TaskStatus, VerificationResult
from .history_aggregate import HistoryAggregate
from .ledger_source_event import LedgerSourceEvent
from .reconciliation_task import ReconciliationTask
from .verified_event import VerifiedEvent

__all__ = [
    "AggregateState",
    "HistoryAggregate",
    "InconsistencySeverity",
    "LedgerSourceEvent",
    "ReconciliationTask",
    "TaskStatus",
    "VerificationResult",
    "VerifiedEvent",
]
