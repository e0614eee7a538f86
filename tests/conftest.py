"""Test configuration and fixtures."""

import os

# Point settings at SQLite BEFORE ledger_history.config is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_STRICT_VERIFICATION"] = "true"

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from ledger_history import models  # noqa: F401
from ledger_history.database import Base, build_engine, build_session_factory
from ledger_history.models import VerificationResult, VerifiedEvent
from ledger_history.services.reconciliation.hasher import compute_content_hash, content_view
from ledger_history.services.reconciliation.store import HistoryStore
from ledger_history.services.reconciliation.verifier import LedgerVerifier

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return HistoryStore(session_factory)


@pytest.fixture
def ledger_client():
    """Ledger that knows every transaction."""
    client = MagicMock()
    client.get_transaction_receipt = MagicMock(return_value={"status": "0x1"})
    client.get_network_id = MagicMock(return_value="1")
    return client


@pytest.fixture
def verifier(ledger_client):
    return LedgerVerifier(ledger_client, max_retries=3, sleep=MagicMock())


@pytest.fixture
def mock_redis():
    """Mock Redis client with call tracking."""
    redis_mock = MagicMock()
    redis_mock.xack = MagicMock(return_value=1)
    redis_mock.xadd = MagicMock(return_value="mock-msg-id")
    return redis_mock


@pytest.fixture
def publisher():
    bus = MagicMock()
    bus.publish_domain_event = MagicMock(return_value="1-0")
    return bus


def make_event(
    product_id: str = "prod-1",
    event_id: str = "evt-1",
    payload: dict | None = None,
    offset_minutes: int = 0,
    ledger_reference: str = "0xabc",
    content_hash: str | None = None,
    verification_result: str = VerificationResult.OK.value,
) -> VerifiedEvent:
    """Verified event whose content hash matches its payload unless overridden."""
    payload = payload if payload is not None else {"product_name": "Coffee", "manufacturer": "Acme"}
    if content_hash is None:
        content_hash = compute_content_hash(content_view(payload))
    return VerifiedEvent(
        product_id=product_id,
        event_id=event_id,
        event_type="HARVEST",
        occurred_at=BASE_TIME + timedelta(minutes=offset_minutes),
        location="farm-1",
        payload=payload,
        content_hash=content_hash,
        ledger_reference=ledger_reference,
        verification_result=verification_result,
        notes="",
        raw_payload="",
        created_at=BASE_TIME,
    )
