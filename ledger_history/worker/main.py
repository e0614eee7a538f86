"""
main.py - Stream ingestion worker.

Consumes ledger transaction notifications from the inbound Redis Stream and
records them as verified events.

GUARANTEES:
- At-least-once delivery: XACK only after the message is handled
- Idempotent: a redelivered notification never creates a second row
- Undeserializable messages go straight to the Dead Letter Queue (DLQ)
- Processing failures are retried up to MAX_RETRIES, then DLQ
- SIGTERM, SIGINT and stop() let the current message finish first
"""

import logging
import os
import signal
import time
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ledger_history.config import settings
from ledger_history.core.redis import (
    CONSUMER_GROUP,
    DLQ_STREAM_NAME,
    MAX_RETRIES,
    STREAM_NAME,
    ensure_consumer_group,
    get_redis_client,
)
from ledger_history.database import SessionLocal, init_db
from ledger_history.models import VerificationResult, VerifiedEvent
from ledger_history.schemas.messages import TransactionNotification
from ledger_history.services.reconciliation.errors import VerificationError
from ledger_history.services.reconciliation.factory import (
    build_verifier,
    resolve_strict_verification,
)
from ledger_history.services.reconciliation.store import HistoryStore

logger = logging.getLogger(__name__)

# Worker identity
CONSUMER_NAME = os.environ.get("WORKER_CONSUMER_NAME", "ledger-history-worker-01")

BLOCK_MS = 5000
READ_COUNT = 1  # sequential

MESSAGE_FIELD = "event"
RETRY_FIELD = "_retry_count"


def to_verified_event(notification: TransactionNotification, raw: str) -> VerifiedEvent:
    """Candidate row for a notification; verification has not run yet."""
    payload = dict(notification.payload)
    if notification.lot:
        payload["lot"] = notification.lot

    return VerifiedEvent(
        product_id=notification.product_id,
        event_id=notification.event_id,
        event_type=notification.event_type,
        occurred_at=notification.occurred_at,
        location=notification.emitting_actor,
        payload=payload,
        content_hash=notification.content_hash,
        ledger_reference=notification.ledger_address,
        verification_result=VerificationResult.OK.value,
        notes="",
        raw_payload=raw,
        created_at=datetime.now(UTC),
    )


class IngestionWorker:
    """
    Records ledger notifications from the inbound stream as verified events.

    Startup creates the consumer group if needed and replays this consumer's
    pending entries. After that each new entry is inserted, verified when
    strict mode is on, and acknowledged. Failing entries are re-queued with a
    counter and dead-lettered once the counter reaches MAX_RETRIES. A signal
    lets the current entry finish before the loop exits.
    """

    def __init__(self) -> None:
        self.running = False
        self.redis = get_redis_client()
        self.store = HistoryStore(SessionLocal)
        self.verifier = build_verifier()
        self.strict_verification = resolve_strict_verification(self.verifier)

    def start(self) -> None:
        """Run until stopped. Returns after a signal or stop()."""
        self.running = True
        for signum in (signal.SIGTERM, signal.SIGINT):
            signal.signal(signum, self._shutdown_handler)

        ensure_consumer_group(self.redis)
        logger.info(
            "Consumer '%s' reading '%s' as group '%s' (strict verification: %s)",
            CONSUMER_NAME,
            STREAM_NAME,
            CONSUMER_GROUP,
            self.strict_verification,
        )

        self._process_pending()

        while self.running:
            try:
                self._dispatch(self._read(">", count=READ_COUNT, block=BLOCK_MS))
            except Exception:
                logger.exception("Stream read failed, pausing before the next attempt")
                time.sleep(1)

        logger.info("Consumer '%s' exited", CONSUMER_NAME)

    def stop(self) -> None:
        self.running = False

    def _read(self, position: str, **options: Any) -> list:
        return self.redis.xreadgroup(
            groupname=CONSUMER_GROUP,
            consumername=CONSUMER_NAME,
            streams={STREAM_NAME: position},
            **options,
        ) or []

    def _dispatch(self, batches: list, replay: bool = False) -> None:
        for _, entries in batches:
            for message_id, fields in entries:
                if not fields:
                    # acked entry still listed in the PEL
                    continue
                if replay:
                    logger.info("Replaying unacknowledged entry %s", message_id)
                self._process_message(message_id, fields)

    def _process_pending(self) -> None:
        """Replay entries delivered to this consumer but never acknowledged."""
        try:
            batches = self._read("0")
            if not batches:
                logger.info("Nothing left pending for '%s'", CONSUMER_NAME)
                return
            self._dispatch(batches, replay=True)
        except Exception:
            logger.exception("Replay of pending entries failed")

    def _process_message(self, message_id: str, fields: dict[str, Any]) -> None:
        raw = fields.get(MESSAGE_FIELD)
        if not raw:
            logger.error("Message %s: no '%s' field. Moving to DLQ.", message_id, MESSAGE_FIELD)
            self._move_to_dlq(message_id, fields, "MISSING_EVENT_FIELD")
            return

        try:
            notification = TransactionNotification.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                "Message %s: undeserializable notification (%d errors). Moving to DLQ.",
                message_id,
                e.error_count(),
            )
            self._move_to_dlq(message_id, fields, "INVALID_NOTIFICATION")
            return

        try:
            event = to_verified_event(notification, raw)
            if not self.store.insert_event_if_absent(event):
                # Duplicate: the first-written row is the one that gets verified
                event = self.store.get_event(event.product_id, event.event_id) or event

            if self.strict_verification and event.ledger_reference:
                self._verify(event)

            self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)

        except Exception:
            logger.exception(
                "Message %s: processing failed for event %s/%s",
                message_id,
                notification.product_id,
                notification.event_id,
            )
            self._handle_retry(message_id, fields, notification.event_id)

    def _verify(self, event: VerifiedEvent) -> None:
        """Verify and save the outcome; a failed verification is still an outcome."""
        try:
            self.verifier.verify(event)
        except VerificationError as e:
            logger.warning(
                "Event %s/%s failed verification: %s",
                event.product_id,
                event.event_id,
                e,
            )
        self.store.update_verification(event)

    def _handle_retry(
        self, message_id: str, fields: dict[str, Any], event_id: str
    ) -> None:
        attempt = int(fields.get(RETRY_FIELD, "0")) + 1
        if attempt >= MAX_RETRIES:
            logger.error("Event %s failed %d times, giving up", event_id, attempt)
            self._move_to_dlq(message_id, fields, f"MAX_RETRIES_EXCEEDED({attempt})")
            return

        # Streams have no in-place update: ack the old entry, re-add with the counter
        self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)
        self.redis.xadd(STREAM_NAME, {**fields, RETRY_FIELD: str(attempt)})
        logger.warning("Event %s re-queued (attempt %d of %d)", event_id, attempt, MAX_RETRIES)

    def _move_to_dlq(
        self, message_id: str, fields: dict[str, Any], reason: str
    ) -> None:
        """Park the entry on the dead-letter stream, tagged with why and where from."""
        parked = dict(fields, _dlq_reason=reason, _original_id=message_id)
        self.redis.xadd(DLQ_STREAM_NAME, parked)
        self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)
        logger.warning("Entry %s dead-lettered to '%s': %s", message_id, DLQ_STREAM_NAME, reason)

    def _shutdown_handler(self, signum: int, frame: Any) -> None:
        logger.info("Signal %d received, stopping after the current entry", signum)
        self.stop()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Ledger history ingestion worker starting")
    init_db()
    IngestionWorker().start()


if __name__ == "__main__":
    main()
