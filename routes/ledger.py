"""
Inventory ledger API routes.

Projections are computed on every request; only plan edits and anchor
replacements are written.
"""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.planning import (
    InboundPlanProposal,
    InventoryAnchor,
    LedgerProjection,
    ProjectionRequest,
)
from services.ledger_service import get_ledger_service
from services.master_schedule_service import get_master_refresher
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/ledger",
    tags=["Ledger"],
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
# PROJECTION ROUTES
# ===================

@router.post("/projection", response_model=LedgerProjection)
async def project_inline(request: ProjectionRequest):
    """
    Project a ledger from inline planning data.

    The SKU is resolved from the store; demand, actuals, inbound and the
    anchor come from the request body.
    """
    try:
        service = get_ledger_service()
        return service.project_request(request)

    except Exception as e:
        return handle_error(e)


@router.get("/{sku}/projection", response_model=LedgerProjection)
async def project_stored(
    sku: str,
    start_date: Optional[date] = Query(None, description="First projected day (default today)"),
    horizon_days: Optional[int] = Query(None, ge=1, le=365, description="Days to project"),
    safety_stock_loads: Optional[int] = Query(None, ge=0, description="Override safety stock"),
    lead_time_days: Optional[int] = Query(None, ge=0, description="Override lead time"),
):
    """
    Project the stored plan for a SKU.

    Raises:
        404: Product not found
        422: Invalid product spec
    """
    try:
        service = get_ledger_service()
        return service.project_sku(
            sku,
            start_date=start_date,
            horizon_days=horizon_days,
            safety_stock_loads=safety_stock_loads,
            lead_time_days=lead_time_days,
        )

    except Exception as e:
        return handle_error(e)


# ===================
# REPLENISHMENT ROUTES
# ===================

@router.get("/{sku}/replenishment", response_model=InboundPlanProposal)
async def propose_replenishment(
    sku: str,
    frozen_days: Optional[int] = Query(None, ge=0, description="Days that can no longer change"),
    start_date: Optional[date] = Query(None),
    horizon_days: Optional[int] = Query(None, ge=1, le=365),
):
    """Preview the inbound plan that keeps every day above safety stock."""
    try:
        service = get_ledger_service()
        return service.propose_replenishment(sku, frozen_days, start_date, horizon_days)

    except Exception as e:
        return handle_error(e)


@router.post("/{sku}/replenishment", response_model=InboundPlanProposal)
async def apply_replenishment(
    sku: str,
    frozen_days: Optional[int] = Query(None, ge=0),
    start_date: Optional[date] = Query(None),
    horizon_days: Optional[int] = Query(None, ge=1, le=365),
):
    """Apply the proposed inbound plan to the store."""
    try:
        service = get_ledger_service()
        proposal = service.apply_replenishment(sku, frozen_days, start_date, horizon_days)
        if proposal.changed_dates:
            get_master_refresher().notify()
        return proposal

    except Exception as e:
        return handle_error(e)


# ===================
# PLAN EDIT ROUTES
# ===================

@router.put("/{sku}/entries/{field}")
async def update_entries(sku: str, field: str, entries: dict[str, Optional[Any]]):
    """
    Merge date -> value edits into a planning map.

    Fields: demand_plan, production_actual, inbound_trucks, confirmed_inbound.
    A null value clears the date.
    """
    try:
        service = get_ledger_service()
        data = service.update_entries(sku, field, entries)
        get_master_refresher().notify()
        return {"sku": sku, "field": field, "data": data}

    except Exception as e:
        return handle_error(e)


@router.put("/{sku}/anchor", response_model=InventoryAnchor)
async def replace_anchor(sku: str, anchor: InventoryAnchor):
    """Replace the inventory anchor the ledger extrapolates from."""
    try:
        service = get_ledger_service()
        return service.set_anchor(sku, anchor)

    except Exception as e:
        return handle_error(e)
