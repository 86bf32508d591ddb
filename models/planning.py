"""
Inventory ledger projection schemas.

Models for the per-product planning ledger:
- InventoryAnchor: declared inventory level the ledger extrapolates from
- LedgerDay: one projected day
- OrderRecommendation: purchasing advice grouped by order date
- LedgerProjection: full result of one projection pass
- InboundPlanProposal: replenishment solver output
"""

from enum import Enum
from decimal import Decimal
import datetime
from typing import Any, Optional

from pydantic import Field

from models.base import BaseSchema


# ===================
# ENUMS
# ===================

class AnchorUnit(str, Enum):
    """Unit an inventory anchor count is expressed in."""
    PALLETS = "pallets"
    UNITS = "units"


class OrderStatus(str, Enum):
    """Where an order date sits relative to today."""
    OVERDUE = "OVERDUE"
    TODAY = "TODAY"
    UPCOMING = "UPCOMING"


# ===================
# INPUT SCHEMAS
# ===================

class InventoryAnchor(BaseSchema):
    """
    Declared inventory level valid at the start of `date`.

    Replacing the anchor is the only way to correct projection drift.
    """

    date: datetime.date = Field(..., description="Calendar day the count was taken")
    count: Decimal = Field(Decimal("0"), description="Counted inventory")
    unit: AnchorUnit = Field(AnchorUnit.PALLETS, description="Unit of count")


class PlanningSnapshot(BaseSchema):
    """
    Raw sparse date maps for one product, as loaded from the store.

    Values are left untyped here: coercion happens in the projector so bad
    entries become 0 instead of failing validation.
    """

    demand: dict[str, Any] = Field(default_factory=dict, description="Planned cases per day")
    actuals: dict[str, Any] = Field(default_factory=dict, description="Realized cases per day")
    inbound: dict[str, Any] = Field(default_factory=dict, description="Planned truck loads per day")
    confirmed_inbound: dict[str, Any] = Field(
        default_factory=dict,
        description="Confirmed PO truck loads per day (overrides planned inbound)"
    )


class ProjectionRequest(BaseSchema):
    """Inline projection request (spec resolved by SKU)."""

    sku: str = Field(..., min_length=1)
    anchor: InventoryAnchor
    snapshot: PlanningSnapshot = Field(default_factory=PlanningSnapshot)
    safety_stock_loads: Optional[int] = Field(None, ge=0)
    lead_time_days: Optional[int] = Field(None, ge=0)
    horizon_days: Optional[int] = Field(None, ge=1, le=365)
    yard_loads: Decimal = Field(Decimal("0"), ge=0)
    start_date: Optional[datetime.date] = None


# ===================
# RESULT SCHEMAS
# ===================

class LedgerDay(BaseSchema):
    """One projected day. Balances are in units (bottles)."""

    date: datetime.date
    balance: Decimal = Field(..., description="End-of-day inventory in units")
    demand: Decimal = Field(Decimal("0"), description="Units consumed this day")
    supply: Decimal = Field(Decimal("0"), description="Units received this day")
    projected_pallets: Decimal = Field(Decimal("0"), description="Balance expressed in pallets")
    is_actual: bool = Field(False, description="Consumption came from a recorded actual")
    is_safety_risk: bool = Field(False, description="Balance below zero")
    is_overflow: bool = Field(False, description="Balance above safety target plus two loads")
    is_confirmed: bool = Field(False, description="Inbound came from confirmed POs")


class OrderNeed(BaseSchema):
    """A single day's shortfall folded into an order recommendation."""

    need_date: datetime.date
    trucks: int = Field(..., ge=1)


class OrderRecommendation(BaseSchema):
    """Trucks to order on a given date to protect the safety target."""

    order_date: datetime.date
    trucks: int = Field(..., ge=1, description="Combined trucks across needs")
    status: OrderStatus
    needs: list[OrderNeed] = Field(default_factory=list)

    @property
    def is_actionable(self) -> bool:
        """Overdue or due today."""
        return self.status in (OrderStatus.OVERDUE, OrderStatus.TODAY)


class LedgerProjection(BaseSchema):
    """
    Result of one projection pass for a product.

    Regenerated on every call; nothing here is persisted.
    """

    sku: str
    start_date: datetime.date
    horizon_days: int
    lead_time_days: int
    safety_stock_loads: int
    safety_target: Decimal = Field(..., description="Safety stock in units")
    floor_inventory: Decimal = Field(..., description="Start-of-day inventory on start_date")
    floor_pallets: Decimal = Field(Decimal("0"))
    yard_loads: Decimal = Field(Decimal("0"))
    is_secure: bool
    runway_days: int = Field(..., description="Days before the first negative balance")
    days_of_supply: Decimal = Field(..., description="Runway including the partial failing day")
    first_stockout_date: Optional[datetime.date] = None
    first_safety_breach_date: Optional[datetime.date] = None
    first_overflow_date: Optional[datetime.date] = None
    trucks_to_order: int = 0
    trucks_to_cancel: int = 0
    scheduled_cases: Decimal = Field(Decimal("0"), description="Cases planned from start_date on")
    lost_production_cases: Decimal = Field(Decimal("0"), description="Downtime hours x line rate")
    effective_scheduled_cases: Decimal = Field(Decimal("0"), description="Scheduled minus lost, floored at 0")
    total_incoming_trucks: Decimal = Field(Decimal("0"), description="Inbound loads from start_date on")
    net_inventory: Decimal = Field(
        Decimal("0"),
        description="Floor + yard + incoming minus effective scheduled demand, in units"
    )
    days: list[LedgerDay] = Field(default_factory=list)
    recommendations: list[OrderRecommendation] = Field(default_factory=list)
    planned_orders: list[OrderRecommendation] = Field(
        default_factory=list,
        description="Planned inbound not yet on a confirmed PO, by order date"
    )

    @property
    def overdue_or_today(self) -> list[OrderRecommendation]:
        return [r for r in self.recommendations if r.is_actionable]

    @property
    def upcoming(self) -> list[OrderRecommendation]:
        return [r for r in self.recommendations if not r.is_actionable]


class InboundPlanProposal(BaseSchema):
    """Replenishment solver output: new planned inbound per day."""

    sku: str
    new_inbound: dict[datetime.date, float] = Field(
        default_factory=dict, description="Planned truck loads per day, fractions kept"
    )
    changed_dates: list[datetime.date] = Field(default_factory=list)
    updates_count: int = 0
