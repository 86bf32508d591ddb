"""
Business logic services.

Each service handles one planning area.
"""

from services.product_service import ProductService, build_spec, get_product_service
from services.planning_store import (
    PlanningStore,
    InMemoryPlanningStore,
    SupabasePlanningStore,
    get_planning_store,
)
from services.ledger_service import (
    LedgerProjector,
    LedgerService,
    get_ledger_projector,
    get_ledger_service,
)
from services.truck_schedule_service import (
    TruckScheduler,
    TruckScheduleService,
    get_truck_scheduler,
    get_truck_schedule_service,
)
from services.master_schedule_service import (
    MasterScheduleService,
    MasterScheduleRefresher,
    aggregate,
    get_master_schedule_service,
    get_master_refresher,
)

__all__ = [
    "ProductService",
    "build_spec",
    "get_product_service",
    "PlanningStore",
    "InMemoryPlanningStore",
    "SupabasePlanningStore",
    "get_planning_store",
    "LedgerProjector",
    "LedgerService",
    "get_ledger_projector",
    "get_ledger_service",
    "TruckScheduler",
    "TruckScheduleService",
    "get_truck_scheduler",
    "get_truck_schedule_service",
    "MasterScheduleService",
    "MasterScheduleRefresher",
    "aggregate",
    "get_master_schedule_service",
    "get_master_refresher",
]
