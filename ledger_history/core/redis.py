"""
redis.py - Redis Streams event bus.

Inbound: transaction notifications are read from INBOUND_STREAM by the
stream worker through a consumer group (at-least-once, XACK after handling).
Outbound: derived domain events are XADDed to PRODUCER_STREAM.

Undeserializable or repeatedly failing inbound messages are moved to
DLQ_STREAM with the failure reason.
"""

import json
import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import redis

from ledger_history.config import settings

logger = logging.getLogger(__name__)

STREAM_NAME = settings.INBOUND_STREAM
DLQ_STREAM_NAME = settings.DLQ_STREAM
CONSUMER_GROUP = settings.CONSUMER_GROUP
PRODUCER_STREAM_NAME = settings.PRODUCER_STREAM
MAX_RETRIES = 3


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """Process-wide client, pinged once so a dead Redis fails at startup."""
    client = redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=10,
        retry_on_timeout=True,
    )
    client.ping()
    logger.info("Redis client connected to %s", settings.REDIS_URL)
    return client


def ensure_consumer_group(client: redis.Redis, stream: str = STREAM_NAME) -> None:
    """Create CONSUMER_GROUP on the stream; an existing group is left as is."""
    try:
        client.xgroup_create(stream, CONSUMER_GROUP, id="0", mkstream=True)
        logger.info("Created consumer group '%s' on stream '%s'", CONSUMER_GROUP, stream)
    except redis.ResponseError as e:
        if "BUSYGROUP" in str(e):
            # Group already exists after a restart
            logger.debug("Consumer group '%s' already exists", CONSUMER_GROUP)
        else:
            raise


class EventBus:
    """
    Publishes domain events as stream entries.

    Entry fields: ``key``, ``payload`` (JSON) and one ``header.<name>`` field
    per header.
    """

    def __init__(self, client: redis.Redis, topic: str = PRODUCER_STREAM_NAME):
        self.client = client
        self.topic = topic

    def publish(
        self,
        key: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        topic: str | None = None,
    ) -> str:
        fields = {"key": key, "payload": json.dumps(payload, default=str)}
        for name, value in (headers or {}).items():
            fields[f"header.{name}"] = value

        stream = topic or self.topic
        message_id = self.client.xadd(stream, fields)
        logger.info("Published %s to '%s' (id: %s)", key, stream, message_id)
        return message_id

    def publish_domain_event(self, event_type: str, payload: dict[str, Any]) -> str:
        """Publish with the standard event-type and timestamp headers."""
        headers = {
            "event-type": event_type,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        return self.publish(event_type, payload, headers)
