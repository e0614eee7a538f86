import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledger_history.api.v1.api import router as api_router
from ledger_history.api.v1.endpoints import health
from ledger_history.config import settings
from ledger_history.database import init_db
from ledger_history.services.reconciliation.errors import (
    EventNotFoundError,
    NoEventsError,
    ReconciliationError,
)
from ledger_history.services.reconciliation.factory import get_task_runner

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

NOT_FOUND_ERRORS = (EventNotFoundError, NoEventsError)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    # Only shut the pool down if this process ever started it
    if get_task_runner.cache_info().currsize:
        get_task_runner().shutdown(wait=False)


app = FastAPI(title="Ledger History API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    status_code = 404 if isinstance(exc, NOT_FOUND_ERRORS) else 500
    if status_code == 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
    )


# Health routes live outside the versioned API
app.include_router(health.router, tags=["health"])

# Include v1 routers
app.include_router(api_router, prefix="/api/v1")


def run() -> None:
    """Serve the API (equivalent to ``uvicorn ledger_history.main:app``)."""
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
