"""
Master schedule schemas.

The master ledger folds every active product's sparse planning maps into
one date-keyed activity table.
"""

import datetime
from typing import Optional

from pydantic import Field

from models.base import BaseSchema


class SKUActivity(BaseSchema):
    """Activity for one product on one day."""

    sku: str
    demand: float = Field(0, ge=0, description="Planned cases")
    actual: Optional[float] = Field(None, description="Realized cases, None when not recorded")
    trucks: float = Field(0, ge=0, description="Inbound truck loads")


class ProductPlanState(BaseSchema):
    """Sparse planning maps for one product as fetched from the store."""

    demand: dict[datetime.date, float] = Field(default_factory=dict)
    actuals: dict[datetime.date, float] = Field(default_factory=dict)
    inbound: dict[datetime.date, float] = Field(default_factory=dict)


class MasterScheduleResult(BaseSchema):
    """One aggregation pass plus the products whose fetch failed."""

    ledger: dict[datetime.date, list[SKUActivity]] = Field(default_factory=dict)
    skus: list[str] = Field(default_factory=list)
    failed_skus: list[str] = Field(default_factory=list)
    generated_at: Optional[datetime.datetime] = None

    @property
    def failure_count(self) -> int:
        return len(self.failed_skus)
