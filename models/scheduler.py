"""
Truck scheduling schemas.

A schedule is regenerated from the current burn rate on every request.
PO tags and cancellations live in the planning store and are re-applied
by slot id.
"""

from pydantic import Field
from typing import Optional

from models.base import BaseSchema


class TruckSlot(BaseSchema):
    """One truck arrival on the 24-hour clock."""

    id: int = Field(..., ge=1, description="1-based slot id, stable across cancellations")
    time: str = Field(..., description="Display arrival time HH:MM")
    raw_decimal: float = Field(..., ge=0, lt=24, description="Arrival hour as a real number")
    po: str = Field("", description="User-assigned purchase order tag")


class ShiftSummary(BaseSchema):
    """Loads arriving within one 8-hour shift."""

    name: str
    loads: int = Field(0, ge=0)


class TruckSchedule(BaseSchema):
    """Result of one scheduling pass."""

    sku: Optional[str] = None
    burn_rate: float = Field(..., description="Cases per hour")
    cases_per_truck: int
    hours_per_truck: float = Field(..., description="Hours between arrivals")
    required_daily_loads: int
    weekly_loads: int
    shift_start_time: str
    safety_stock_loads: int
    is_high_risk: bool
    shifts: list[ShiftSummary] = Field(default_factory=list)
    trucks: list[TruckSlot] = Field(default_factory=list)
    cancelled_ids: list[int] = Field(default_factory=list)


class PoAssignmentUpdate(BaseSchema):
    """Request body for tagging a slot with a PO."""

    po: str = Field("", max_length=80)


class ShiftStartUpdate(BaseSchema):
    """Request body for moving the first arrival."""

    shift_start_time: str = Field(..., examples=["06:00"])
