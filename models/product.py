"""
Product specification schemas.

A ProductSpec is the immutable packaging and rate data the planning
engines read. Derived ratios use floor division and fall back to 0 when a
divisor is 0, so they are never infinite.
"""

from pydantic import Field, computed_field, field_validator
from typing import Optional

from models.base import BaseSchema


def _floor_div(numerator: int, denominator: int) -> int:
    """Integer floor division that yields 0 for a zero divisor."""
    if denominator <= 0:
        return 0
    return numerator // denominator


class ProductSpec(BaseSchema):
    """
    Packaging ratios and production rate for one SKU.

    Units are individual containers (bottles). Production rate is in
    cases per hour.
    """

    sku: str = Field(
        ...,
        min_length=1,
        max_length=80,
        description="Product name / SKU (unique per owner)",
        examples=["20oz", "2L"]
    )
    units_per_case: int = Field(..., ge=0, description="Bottles per case")
    cases_per_pallet: int = Field(..., ge=0, description="Cases per pallet")
    units_per_truck: int = Field(..., ge=0, description="Bottles per truck load")
    production_rate: float = Field(
        0.0,
        ge=0,
        description="Line consumption rate in cases per hour"
    )
    pallets_per_truck_override: Optional[int] = Field(
        None,
        ge=0,
        description="Explicit stored pallets per truck, replaces the derived value"
    )
    downtime_hours: float = Field(
        0.0,
        ge=0,
        description="Planned downtime hours (informational)"
    )

    @field_validator("production_rate", "downtime_hours", mode="before")
    @classmethod
    def none_is_zero(cls, v):
        """Stored settings may be NULL."""
        return 0.0 if v is None else v

    @computed_field
    @property
    def cases_per_truck(self) -> int:
        return _floor_div(self.units_per_truck, self.units_per_case)

    @computed_field
    @property
    def pallets_per_truck(self) -> int:
        if self.pallets_per_truck_override:
            return self.pallets_per_truck_override
        return _floor_div(self.cases_per_truck, self.cases_per_pallet)

    @computed_field
    @property
    def units_per_pallet(self) -> int:
        return self.units_per_case * self.cases_per_pallet

    def invalid_ratio(self) -> Optional[tuple[str, int]]:
        """
        First packaging ratio that is not positive, or None.

        Returns:
            (field_name, value) tuple for the offending ratio
        """
        for field in ("units_per_case", "cases_per_pallet", "units_per_truck"):
            value = getattr(self, field)
            if value <= 0:
                return field, value
        return None
