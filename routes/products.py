"""
Product specification API routes.

Read-only: packaging ratios are maintained by the configuration store.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from models.product import ProductSpec
from services.product_service import get_product_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


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
    # Unexpected error
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

@router.get("")
async def list_products():
    """
    List active SKUs in master schedule order.
    """
    try:
        service = get_product_service()
        skus = service.get_all_skus()
        return {"data": skus, "total": len(skus)}

    except Exception as e:
        return handle_error(e)


@router.get("/{sku}/spec", response_model=ProductSpec)
async def get_product_spec(sku: str):
    """
    Get the resolved packaging ratios and line rate for a SKU.

    Raises:
        404: Product not found
        422: A packaging ratio is zero or negative
    """
    try:
        service = get_product_service()
        return service.resolve(sku)

    except Exception as e:
        return handle_error(e)
