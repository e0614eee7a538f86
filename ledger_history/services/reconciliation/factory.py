"""
factory.py - Process-wide reconciliation service built from settings.

If the ledger cannot be reached at startup, strict verification is turned
off for the lifetime of the process and a warning is logged. If Redis cannot
be reached, domain events are not published.
"""

import logging
from datetime import timedelta
from functools import lru_cache

import redis

from ledger_history.config import settings
from ledger_history.core.ledger import get_ledger_client
from ledger_history.core.redis import EventBus, get_redis_client
from ledger_history.database import SessionLocal
from ledger_history.services.reconciliation.errors import LedgerUnavailableError
from ledger_history.services.reconciliation.service import ReconciliationService
from ledger_history.services.reconciliation.store import HistoryStore
from ledger_history.services.reconciliation.synchronizer import LedgerSynchronizer
from ledger_history.services.reconciliation.tasks import ReconciliationTaskRunner
from ledger_history.services.reconciliation.verifier import LedgerVerifier

logger = logging.getLogger(__name__)


def build_verifier() -> LedgerVerifier:
    return LedgerVerifier(get_ledger_client(), max_retries=settings.MAX_RETRIES)


def resolve_strict_verification(verifier: LedgerVerifier) -> bool:
    if not settings.ENABLE_STRICT_VERIFICATION:
        return False
    try:
        verifier.verify_connection()
    except LedgerUnavailableError as e:
        logger.warning("Ledger unreachable, strict verification disabled: %s", e)
        return False
    return True


def build_event_bus() -> EventBus | None:
    try:
        return EventBus(get_redis_client(), settings.PRODUCER_STREAM)
    except redis.RedisError as e:
        logger.warning("Redis unreachable, domain events will not be published: %s", e)
        return None


@lru_cache(maxsize=1)
def get_reconciliation_service() -> ReconciliationService:
    store = HistoryStore(SessionLocal)
    verifier = build_verifier()
    return ReconciliationService(
        store=store,
        synchronizer=LedgerSynchronizer(store),
        verifier=verifier,
        publisher=build_event_bus(),
        strict_verification=resolve_strict_verification(verifier),
        freshness_window=timedelta(seconds=settings.FRESHNESS_WINDOW_SECONDS),
    )


@lru_cache(maxsize=1)
def get_task_runner() -> ReconciliationTaskRunner:
    return ReconciliationTaskRunner(
        get_reconciliation_service(),
        max_workers=settings.RECONCILE_MAX_WORKERS,
    )
