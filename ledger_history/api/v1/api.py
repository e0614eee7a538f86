from fastapi import APIRouter

from ledger_history.api.v1.endpoints import history

# Create the main API router
router = APIRouter()

router.include_router(history.router, prefix="/history", tags=["history"])
