"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.product import ProductSpec
from models.planning import (
    AnchorUnit,
    OrderStatus,
    InventoryAnchor,
    PlanningSnapshot,
    ProjectionRequest,
    LedgerDay,
    OrderNeed,
    OrderRecommendation,
    LedgerProjection,
    InboundPlanProposal,
)
from models.scheduler import (
    TruckSlot,
    ShiftSummary,
    TruckSchedule,
    PoAssignmentUpdate,
    ShiftStartUpdate,
)
from models.master import (
    SKUActivity,
    ProductPlanState,
    MasterScheduleResult,
)

__all__ = [
    # Base
    "BaseSchema",

    # Product
    "ProductSpec",

    # Planning
    "AnchorUnit",
    "OrderStatus",
    "InventoryAnchor",
    "PlanningSnapshot",
    "ProjectionRequest",
    "LedgerDay",
    "OrderNeed",
    "OrderRecommendation",
    "LedgerProjection",
    "InboundPlanProposal",

    # Scheduler
    "TruckSlot",
    "ShiftSummary",
    "TruckSchedule",
    "PoAssignmentUpdate",
    "ShiftStartUpdate",

    # Master
    "SKUActivity",
    "ProductPlanState",
    "MasterScheduleResult",
]
