"""
Master schedule aggregation.

Folds every active product's sparse demand, actual and inbound maps into a
single date-keyed activity table. Products are fetched concurrently; a
product whose fetch fails contributes nothing and is reported back instead
of failing the whole pass.

Re-aggregation on change notifications goes through MasterScheduleRefresher,
which coalesces bursts of notifications into one pass.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

import structlog

from config import settings
from models.master import MasterScheduleResult, ProductPlanState, SKUActivity
from services.product_service import get_product_service
from services.planning_store import (
    DEMAND_PLAN,
    INBOUND_TRUCKS,
    PRODUCTION_ACTUAL,
    get_planning_store,
)
from utils.date_utils import coerce_quantity, normalize_date_map, union_dates

logger = structlog.get_logger(__name__)

StateFetcher = Callable[[str], ProductPlanState]
SkuSource = Callable[[], list[str]]


def aggregate(
    product_order: Iterable[str],
    states: Mapping[str, ProductPlanState],
) -> dict[date, list[SKUActivity]]:
    """
    Build the master ledger from per-product plan states.

    Dates are the sorted union of every product's keys. Within a date, rows
    follow product_order, so the output does not depend on which fetch
    finished first. A product appears on a date only when it has demand,
    a positive actual, or trucks; dates with no rows are dropped.

    Args:
        product_order: SKUs in display order
        states: SKU -> ProductPlanState

    Returns:
        {date: [SKUActivity, ...]}
    """
    product_order = list(product_order)
    all_dates = union_dates(*(
        keys
        for sku in product_order if sku in states
        for keys in (states[sku].demand, states[sku].actuals, states[sku].inbound)
    ))

    ledger: dict[date, list[SKUActivity]] = {}
    for day in all_dates:
        rows: list[SKUActivity] = []
        for sku in product_order:
            state = states.get(sku)
            if state is None:
                continue

            demand = float(coerce_quantity(state.demand.get(day)))
            actual = float(coerce_quantity(state.actuals[day])) if day in state.actuals else None
            trucks = float(coerce_quantity(state.inbound.get(day)))

            if demand > 0 or (actual is not None and actual > 0) or trucks > 0:
                rows.append(SKUActivity(sku=sku, demand=demand, actual=actual, trucks=trucks))

        if rows:
            ledger[day] = rows

    return ledger


def store_fetcher(product_service=None, store=None) -> StateFetcher:
    """
    Blocking fetcher that reads one product's maps from the planning store.

    Returns:
        Callable sku -> ProductPlanState
    """
    product_service = product_service or get_product_service()
    store = store or get_planning_store()

    def fetch(sku: str) -> ProductPlanState:
        product_id = product_service.get_product_id(sku)
        return ProductPlanState(
            demand=normalize_date_map(store.get(product_id, DEMAND_PLAN)),
            actuals=normalize_date_map(store.get(product_id, PRODUCTION_ACTUAL), drop_none=True),
            inbound=normalize_date_map(store.get(product_id, INBOUND_TRUCKS)),
        )

    return fetch


class MasterScheduleService:
    """
    Cross-product master ledger.

    Holds the last published result. A refresh builds a complete new
    result and swaps it in as a single reference assignment, so readers
    never see a half-built ledger.
    """

    def __init__(
        self,
        fetcher: Optional[StateFetcher] = None,
        sku_source: Optional[SkuSource] = None,
    ):
        if fetcher is None or sku_source is None:
            product_service = get_product_service()
            fetcher = fetcher or store_fetcher(product_service)
            sku_source = sku_source or product_service.get_all_skus
        self.fetcher = fetcher
        self.sku_source = sku_source
        self.passes = 0
        self._lock = asyncio.Lock()
        self._result = MasterScheduleResult()

    @property
    def current(self) -> MasterScheduleResult:
        """Last published result (empty before the first refresh)."""
        return self._result

    async def load_states(
        self,
        skus: list[str],
    ) -> tuple[dict[str, ProductPlanState], list[str]]:
        """
        Fetch every product's maps concurrently.

        Each blocking fetch runs in a worker thread. A failed fetch is
        logged and replaced by empty maps.

        Returns:
            (states, failed_skus)
        """
        results = await asyncio.gather(
            *(asyncio.to_thread(self.fetcher, sku) for sku in skus),
            return_exceptions=True,
        )

        states: dict[str, ProductPlanState] = {}
        failed: list[str] = []
        for sku, result in zip(skus, results):
            if isinstance(result, BaseException):
                logger.warning("master_fetch_failed", sku=sku, error=str(result))
                failed.append(sku)
                states[sku] = ProductPlanState()
            else:
                states[sku] = result

        return states, failed

    async def refresh(self, skus: Optional[list[str]] = None) -> MasterScheduleResult:
        """
        Run one aggregation pass and publish it.

        Passes are serialized; a pass requested while another is running
        waits for it and then reads fresh state.

        Args:
            skus: Product order; defaults to every active product

        Returns:
            The newly published MasterScheduleResult
        """
        async with self._lock:
            if skus is None:
                skus = await asyncio.to_thread(self.sku_source)
            skus = list(skus)

            states, failed = await self.load_states(skus)
            result = MasterScheduleResult(
                ledger=aggregate(skus, states),
                skus=skus,
                failed_skus=failed,
                generated_at=datetime.now(timezone.utc),
            )

            self._result = result
            self.passes += 1

        logger.info(
            "master_schedule_refreshed",
            products=len(skus),
            dates=len(result.ledger),
            failed=len(failed),
            passes=self.passes,
        )
        return result


class MasterScheduleRefresher:
    """
    Debounce gate in front of MasterScheduleService.refresh().

    Every notify() restarts the quiet-period timer. When the timer runs
    out, exactly one pass runs against the latest state. Once a pass has
    started it is never cancelled; a notification arriving during it
    starts a new timer whose pass queues behind the running one.
    """

    def __init__(
        self,
        service: MasterScheduleService,
        debounce_seconds: Optional[float] = None,
    ):
        self.service = service
        self.debounce_seconds = (
            settings.master_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._timer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """A timer is counting down."""
        return self._timer is not None and not self._timer.done()

    def notify(self) -> None:
        """
        Record an external change.

        Must be called from a running event loop.
        """
        if self.pending:
            self._timer.cancel()

        task = asyncio.get_running_loop().create_task(self._fire())
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("master_refresh_scheduled", delay=self.debounce_seconds)

    async def _fire(self) -> None:
        await asyncio.sleep(self.debounce_seconds)

        # Quiet period over: this pass can no longer be cancelled
        if self._timer is asyncio.current_task():
            self._timer = None

        try:
            await self.service.refresh()
        except Exception as e:
            logger.error("master_refresh_failed", error=str(e))

    async def drain(self) -> None:
        """Wait for the pending timer and any running passes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Singleton instances
_master_schedule_service: Optional[MasterScheduleService] = None
_master_refresher: Optional[MasterScheduleRefresher] = None


def get_master_schedule_service() -> MasterScheduleService:
    """Get or create MasterScheduleService instance."""
    global _master_schedule_service
    if _master_schedule_service is None:
        _master_schedule_service = MasterScheduleService()
    return _master_schedule_service


def get_master_refresher() -> MasterScheduleRefresher:
    """Get or create the debounce gate for the master schedule."""
    global _master_refresher
    if _master_refresher is None:
        _master_refresher = MasterScheduleRefresher(get_master_schedule_service())
    return _master_refresher
