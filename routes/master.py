"""
Master schedule API routes.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.master import MasterScheduleResult
from services.master_schedule_service import (
    get_master_refresher,
    get_master_schedule_service,
)
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/master",
    tags=["Master Schedule"],
)


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.get("", response_model=MasterScheduleResult)
async def get_master_schedule(
    refresh: bool = Query(False, description="Re-aggregate before returning"),
):
    """
    Current master ledger across all active products.

    Without refresh, returns the last published pass (running the first
    pass if none has been published yet).
    """
    try:
        service = get_master_schedule_service()
        if refresh or service.current.generated_at is None:
            return await service.refresh()
        return service.current

    except Exception as e:
        return handle_error(e)


@router.post("/notify", status_code=202)
async def notify_change():
    """
    Signal that planning data changed.

    Re-aggregation runs once the notifications go quiet.
    """
    try:
        refresher = get_master_refresher()
        refresher.notify()
        return {"status": "scheduled", "debounce_seconds": refresher.debounce_seconds}

    except Exception as e:
        return handle_error(e)
