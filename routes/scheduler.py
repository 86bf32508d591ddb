"""
Truck scheduler API routes.
"""

from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.scheduler import PoAssignmentUpdate, ShiftStartUpdate, TruckSchedule
from services.truck_schedule_service import get_truck_schedule_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/scheduler",
    tags=["Scheduler"],
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

@router.get("/{sku}", response_model=TruckSchedule)
async def get_schedule(
    sku: str,
    safety_stock_loads: Optional[int] = Query(None, ge=0, description="Override safety stock"),
):
    """
    Daily truck arrival schedule for a SKU.

    Cancelled slots are omitted but keep their ids.
    """
    try:
        service = get_truck_schedule_service()
        return service.get_schedule(sku, safety_stock_loads=safety_stock_loads)

    except Exception as e:
        return handle_error(e)


@router.put("/{sku}/shift-start", response_model=TruckSchedule)
async def set_shift_start(sku: str, data: ShiftStartUpdate):
    """Change the first arrival time."""
    try:
        service = get_truck_schedule_service()
        return service.set_shift_start(sku, data.shift_start_time)

    except Exception as e:
        return handle_error(e)


@router.put("/{sku}/po/{slot_id}", response_model=TruckSchedule)
async def assign_po(sku: str, slot_id: int, data: PoAssignmentUpdate):
    """Tag a truck slot with a purchase order. An empty PO clears the tag."""
    try:
        service = get_truck_schedule_service()
        return service.assign_po(sku, slot_id, data.po)

    except Exception as e:
        return handle_error(e)


@router.post("/{sku}/cancel/{slot_id}", response_model=TruckSchedule)
async def toggle_cancelled(sku: str, slot_id: int):
    """Cancel a truck slot, or restore it if already cancelled."""
    try:
        service = get_truck_schedule_service()
        return service.toggle_cancelled(sku, slot_id)

    except Exception as e:
        return handle_error(e)
