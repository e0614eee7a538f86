"""
Reconciliation service package.

This package rebuilds product histories from the ledger and keeps the
verified-event store consistent with it.
"""

from .errors import (
    EventNotFoundError,
    HashMismatchError,
    LedgerUnavailableError,
    MissingReferenceError,
    NoEventsError,
    PersistError,
    PublishError,
    ReconciliationError,
    SerializationError,
    StoreError,
    SyncError,
    VerificationError,
)
from .hasher import canonicalize, compute_content_hash, content_view
from .service import ReconciliationService, paginate
from .state import derive_state
from .store import HistoryStore
from .synchronizer import LedgerSynchronizer, SyncReport
from .tasks import ReconciliationTaskRunner
from .verifier import LedgerVerifier

__all__ = [
    'EventNotFoundError',
    'HashMismatchError',
    'HistoryStore',
    'LedgerSynchronizer',
    'LedgerUnavailableError',
    'LedgerVerifier',
    'MissingReferenceError',
    'NoEventsError',
    'PersistError',
    'PublishError',
    'ReconciliationError',
    'ReconciliationService',
    'ReconciliationTaskRunner',
    'SerializationError',
    'StoreError',
    'SyncError',
    'SyncReport',
    'VerificationError',
    'canonicalize',
    'compute_content_hash',
    'content_view',
    'derive_state',
    'paginate',
]
