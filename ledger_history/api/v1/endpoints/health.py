import logging

import redis
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ledger_history.core.ledger import LedgerRPCError, get_ledger_client
from ledger_history.core.redis import get_redis_client
from ledger_history.database import SessionLocal

router = APIRouter()
logger = logging.getLogger(__name__)


def check_database() -> bool:
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("Readiness: database unreachable", exc_info=True)
        return False


def check_redis() -> bool:
    try:
        get_redis_client().ping()
        return True
    except redis.RedisError:
        logger.warning("Readiness: redis unreachable", exc_info=True)
        return False


def check_ledger() -> bool:
    try:
        get_ledger_client().get_network_id()
        return True
    except LedgerRPCError:
        logger.warning("Readiness: ledger unreachable", exc_info=True)
        return False


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/health/live")
def liveness():
    return {"status": "alive"}


@router.get("/health/ready")
def readiness():
    """Ready only when the database, Redis and the ledger all answer."""
    checks = {
        "database": check_database(),
        "redis": check_redis(),
        "ledger": check_ledger(),
    }
    if all(checks.values()):
        return {"status": "ready", "checks": checks}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "checks": checks},
    )
