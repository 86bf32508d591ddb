"""
Inventory ledger projection: core planning logic.

Projects a product's day-by-day inventory balance from a declared anchor,
flags safety-stock risk and overflow, and turns shortfalls into purchasing
recommendations keyed by order date.

All balances are in units (bottles). Every day's movement is

    delta[d] = trucks[d] * units_per_truck - cases[d] * units_per_case

where cases[d] is the recorded actual when present, otherwise the plan,
and trucks[d] is the confirmed PO count when present, otherwise the plan.
Arithmetic is Decimal so balance[d] - balance[d-1] == delta[d] exactly.
"""

import math
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional

import structlog

from config import settings
from models.product import ProductSpec
from models.planning import (
    AnchorUnit,
    InventoryAnchor,
    LedgerDay,
    LedgerProjection,
    OrderNeed,
    OrderRecommendation,
    OrderStatus,
    InboundPlanProposal,
    PlanningSnapshot,
    ProjectionRequest,
)
from exceptions import InvalidPlanningFieldError, InvalidProductSpecError
from services.product_service import get_product_service
from services.planning_store import (
    DATE_MAP_FIELDS,
    INBOUND_TRUCKS,
    get_planning_store,
    parse_entry_keys,
)
from utils.date_utils import (
    add_days,
    coerce_quantity,
    date_range,
    days_between,
    normalize_date_map,
    to_iso_map,
)

logger = structlog.get_logger(__name__)

# Overflow when balance exceeds safety target by this many truck loads
OVERFLOW_LOADS = 2

# Anchors older than this still project, but are flagged as stale
STALE_ANCHOR_DAYS = 365

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def build_recommendations(
    needs: list[OrderNeed],
    lead_time_days: int,
    today: date,
) -> list[OrderRecommendation]:
    """
    Group shortfalls by the day their trucks must be ordered.

    order_date = need_date - lead_time_days. Needs that share an order
    date are merged into one recommendation with their trucks summed.

    Returns:
        Recommendations sorted by order date
    """
    by_order_date: dict[date, list[OrderNeed]] = {}
    for need in needs:
        order_date = add_days(need.need_date, -lead_time_days)
        by_order_date.setdefault(order_date, []).append(need)

    recommendations = []
    for order_date in sorted(by_order_date):
        grouped = sorted(by_order_date[order_date], key=lambda n: n.need_date)
        if order_date < today:
            status = OrderStatus.OVERDUE
        elif order_date == today:
            status = OrderStatus.TODAY
        else:
            status = OrderStatus.UPCOMING
        recommendations.append(OrderRecommendation(
            order_date=order_date,
            trucks=sum(n.trucks for n in grouped),
            status=status,
            needs=grouped,
        ))
    return recommendations


class _DailyFlows:
    """Per-day supply and consumption for one product, in units."""

    def __init__(
        self,
        spec: ProductSpec,
        demand: Optional[Mapping[Any, Any]],
        actuals: Optional[Mapping[Any, Any]],
        inbound: Optional[Mapping[Any, Any]],
        confirmed_inbound: Optional[Mapping[Any, Any]],
    ):
        self.units_per_case = Decimal(spec.units_per_case)
        self.units_per_truck = Decimal(spec.units_per_truck)
        self.demand = normalize_date_map(demand)
        self.actuals = normalize_date_map(actuals, drop_none=True)
        self.inbound = normalize_date_map(inbound)
        self.confirmed = {
            d: v for d, v in normalize_date_map(confirmed_inbound).items() if v > 0
        }

    def trucks(self, day: date) -> Decimal:
        if day in self.confirmed:
            return self.confirmed[day]
        return self.inbound.get(day, ZERO)

    def cases(self, day: date) -> Decimal:
        # A recorded actual replaces the plan for that day
        if day in self.actuals:
            return self.actuals[day]
        return self.demand.get(day, ZERO)

    def supply(self, day: date) -> Decimal:
        return self.trucks(day) * self.units_per_truck

    def consumption(self, day: date) -> Decimal:
        return self.cases(day) * self.units_per_case

    def delta(self, day: date) -> Decimal:
        return self.supply(day) - self.consumption(day)

    def scheduled_trucks_from(self, start: date) -> Decimal:
        days = set(self.inbound) | set(self.confirmed)
        return sum((self.trucks(d) for d in days if d >= start), ZERO)

    def scheduled_cases_from(self, start: date) -> Decimal:
        days = set(self.demand) | set(self.actuals)
        return sum((self.cases(d) for d in days if d >= start), ZERO)

    def unconfirmed_inbound(self) -> dict[date, Decimal]:
        """Planned loads per day not yet covered by a confirmed PO."""
        uncovered = {}
        for day, planned in self.inbound.items():
            remaining = planned - self.confirmed.get(day, ZERO)
            if remaining > 0:
                uncovered[day] = remaining
        return uncovered


class LedgerProjector:
    """
    Inventory ledger business logic.

    Pure computation: inputs are snapshots, nothing is read from or
    written to the store here.

    Core methods:
    - project: daily ledger, risk flags, runway, purchasing advice
    - propose_inbound_plan: replenishment solver over a projection
    """

    def project(
        self,
        spec: ProductSpec,
        anchor: InventoryAnchor,
        demand: Optional[Mapping[Any, Any]] = None,
        actuals: Optional[Mapping[Any, Any]] = None,
        inbound: Optional[Mapping[Any, Any]] = None,
        confirmed_inbound: Optional[Mapping[Any, Any]] = None,
        safety_stock_loads: Optional[int] = None,
        lead_time_days: Optional[int] = None,
        start_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
        yard_loads: Any = 0,
    ) -> LedgerProjection:
        """
        Project the inventory ledger for one product.

        Args:
            spec: Resolved product spec
            anchor: Declared inventory at the start of anchor.date
            demand: Planned cases per day
            actuals: Realized cases per day (override demand when present)
            inbound: Planned truck loads per day
            confirmed_inbound: Confirmed PO loads per day (override inbound)
            safety_stock_loads: Safety stock in truck loads
            lead_time_days: Days between ordering and delivery
            start_date: First projected day ("today")
            horizon_days: Number of projected days
            yard_loads: Loaded trailers waiting in the yard

        Returns:
            LedgerProjection

        Raises:
            InvalidProductSpecError: If a packaging ratio is not positive
        """
        invalid = spec.invalid_ratio()
        if invalid:
            raise InvalidProductSpecError(spec.sku, *invalid)

        start_date = start_date or date.today()
        horizon_days = horizon_days if horizon_days is not None else settings.ledger_horizon_days
        horizon_days = max(1, int(horizon_days))
        safety_stock_loads = int(coerce_quantity(
            settings.safety_stock_loads if safety_stock_loads is None else safety_stock_loads
        ))
        lead_time_days = int(coerce_quantity(
            settings.lead_time_days if lead_time_days is None else lead_time_days
        ))
        yard = coerce_quantity(yard_loads)

        flows = _DailyFlows(spec, demand, actuals, inbound, confirmed_inbound)
        units_per_truck = flows.units_per_truck
        units_per_pallet = Decimal(spec.units_per_pallet)

        safety_target = Decimal(safety_stock_loads) * units_per_truck
        overflow_level = safety_target + units_per_truck * OVERFLOW_LOADS

        opening = self._opening_balance(anchor, spec, flows, start_date)

        # Walk the horizon
        days: list[LedgerDay] = []
        balance = opening
        runway_days: Optional[int] = None
        first_safety_breach: Optional[date] = None
        first_overflow: Optional[date] = None

        for i, day in enumerate(date_range(start_date, horizon_days)):
            supply = flows.supply(day)
            consumption = flows.consumption(day)
            balance = balance + supply - consumption

            is_risk = balance < 0
            is_overflow = balance > overflow_level

            if is_risk and runway_days is None:
                runway_days = i
            if balance < safety_target and first_safety_breach is None:
                first_safety_breach = day
            if is_overflow and first_overflow is None:
                first_overflow = day

            days.append(LedgerDay(
                date=day,
                balance=balance,
                demand=consumption,
                supply=supply,
                projected_pallets=(balance / units_per_pallet).quantize(TWO_PLACES),
                is_actual=day in flows.actuals,
                is_safety_risk=is_risk,
                is_overflow=is_overflow,
                is_confirmed=day in flows.confirmed,
            ))

        first_stockout = days[runway_days].date if runway_days is not None else None
        days_of_supply = self._days_of_supply(days, runway_days, opening, horizon_days)

        is_secure = opening + yard * units_per_truck >= safety_target

        recommendations = self._recommend_orders(
            days, safety_target, units_per_truck, lead_time_days, start_date
        )
        trucks_to_order, trucks_to_cancel = self._lead_time_position(
            flows, opening, yard, safety_target, lead_time_days, start_date
        )

        # Whole-plan position: downtime trims the remaining production run
        scheduled_cases = flows.scheduled_cases_from(start_date)
        lost_cases = coerce_quantity(spec.downtime_hours) * coerce_quantity(spec.production_rate)
        effective_cases = max(ZERO, scheduled_cases - lost_cases)
        incoming_trucks = flows.scheduled_trucks_from(start_date)
        net_inventory = (
            opening
            + (yard + incoming_trucks) * units_per_truck
            - effective_cases * flows.units_per_case
        )

        planned_orders = self._planned_orders(flows, lead_time_days, start_date)

        projection = LedgerProjection(
            sku=spec.sku,
            start_date=start_date,
            horizon_days=horizon_days,
            lead_time_days=lead_time_days,
            safety_stock_loads=safety_stock_loads,
            safety_target=safety_target,
            floor_inventory=opening,
            floor_pallets=(opening / units_per_pallet).quantize(TWO_PLACES),
            yard_loads=yard,
            is_secure=is_secure,
            runway_days=runway_days if runway_days is not None else horizon_days,
            days_of_supply=days_of_supply,
            first_stockout_date=first_stockout,
            first_safety_breach_date=first_safety_breach,
            first_overflow_date=first_overflow,
            trucks_to_order=trucks_to_order,
            trucks_to_cancel=trucks_to_cancel,
            scheduled_cases=scheduled_cases,
            lost_production_cases=lost_cases,
            effective_scheduled_cases=effective_cases,
            total_incoming_trucks=incoming_trucks,
            net_inventory=net_inventory,
            days=days,
            recommendations=recommendations,
            planned_orders=planned_orders,
        )

        logger.info(
            "ledger_projected",
            sku=spec.sku,
            start_date=start_date.isoformat(),
            horizon_days=horizon_days,
            floor_inventory=str(opening),
            first_stockout=first_stockout.isoformat() if first_stockout else None,
            recommendations=len(recommendations),
            is_secure=is_secure,
        )

        return projection

    def project_snapshot(
        self,
        spec: ProductSpec,
        anchor: InventoryAnchor,
        snapshot: PlanningSnapshot,
        **kwargs,
    ) -> LedgerProjection:
        """project() with the four maps taken from a PlanningSnapshot."""
        return self.project(
            spec,
            anchor,
            demand=snapshot.demand,
            actuals=snapshot.actuals,
            inbound=snapshot.inbound,
            confirmed_inbound=snapshot.confirmed_inbound,
            **kwargs,
        )

    # ===================
    # INTERNAL STEPS
    # ===================

    def _opening_balance(
        self,
        anchor: InventoryAnchor,
        spec: ProductSpec,
        flows: _DailyFlows,
        start_date: date,
    ) -> Decimal:
        """
        Start-of-day balance on start_date, extrapolated from the anchor.

        Forward: anchor + sum(delta[anchor .. start-1])
        Backward: anchor - sum(delta[start .. anchor-1])
        """
        count = coerce_quantity(anchor.count)
        if anchor.unit == AnchorUnit.PALLETS:
            count = count * Decimal(spec.units_per_pallet)

        gap = days_between(anchor.date, start_date)
        if abs(gap) > STALE_ANCHOR_DAYS:
            logger.warning(
                "inventory_anchor_stale",
                sku=spec.sku,
                anchor_date=anchor.date.isoformat(),
                days=gap,
            )

        if gap >= 0:
            return count + sum(
                (flows.delta(day) for day in date_range(anchor.date, gap)),
                ZERO,
            )
        return count - sum(
            (flows.delta(day) for day in date_range(start_date, -gap)),
            ZERO,
        )

    @staticmethod
    def _days_of_supply(
        days: list[LedgerDay],
        runway_days: Optional[int],
        opening: Decimal,
        horizon_days: int,
    ) -> Decimal:
        """Runway plus the fraction of the failing day the stock covers."""
        if runway_days is None:
            return Decimal(horizon_days)

        failing = days[runway_days]
        prev_balance = days[runway_days - 1].balance if runway_days > 0 else opening
        partial = ZERO
        if failing.demand > 0 and prev_balance > 0:
            partial = prev_balance / failing.demand
        return (Decimal(runway_days) + partial).quantize(TWO_PLACES)

    @staticmethod
    def _recommend_orders(
        days: list[LedgerDay],
        safety_target: Decimal,
        units_per_truck: Decimal,
        lead_time_days: int,
        today: date,
    ) -> list[OrderRecommendation]:
        """
        Purchasing advice for every day projected below the safety target.

        Trucks already recommended for earlier days carry forward, so a
        single shortfall is not ordered twice.
        """
        added = ZERO
        needs: list[OrderNeed] = []

        for day in days:
            adjusted = day.balance + added
            if adjusted >= safety_target:
                continue
            trucks = math.ceil((safety_target - adjusted) / units_per_truck)
            added += Decimal(trucks) * units_per_truck
            needs.append(OrderNeed(need_date=day.date, trucks=trucks))

        return build_recommendations(needs, lead_time_days, today)

    @staticmethod
    def _planned_orders(
        flows: _DailyFlows,
        lead_time_days: int,
        today: date,
    ) -> list[OrderRecommendation]:
        """
        Planned inbound still waiting on a PO, grouped by order date.

        A partial load still needs a truck ordered, so counts round up.
        """
        needs = [
            OrderNeed(need_date=day, trucks=math.ceil(trucks))
            for day, trucks in flows.unconfirmed_inbound().items()
        ]
        return build_recommendations(needs, lead_time_days, today)

    @staticmethod
    def _lead_time_position(
        flows: _DailyFlows,
        opening: Decimal,
        yard: Decimal,
        safety_target: Decimal,
        lead_time_days: int,
        today: date,
    ) -> tuple[int, int]:
        """
        Trucks to order or cancel given what can arrive within lead time.

        Only inventory on hand or landing inside the lead window counts as
        available; later supply cannot fix a shortfall inside it.

        Returns:
            (trucks_to_order, trucks_to_cancel)
        """
        units_per_truck = flows.units_per_truck
        window = date_range(today, lead_time_days + 1)

        inbound_within = sum((flows.trucks(d) for d in window), ZERO)
        available = opening + yard * units_per_truck + inbound_within * units_per_truck
        demand_within = sum((flows.consumption(d) for d in window), ZERO)
        material_need = demand_within + safety_target

        if available < material_need:
            return math.ceil((material_need - available) / units_per_truck), 0

        excess = available - material_need
        if excess > units_per_truck:
            cancellable = int(flows.scheduled_trucks_from(today))
            return 0, min(math.floor(excess / units_per_truck), cancellable)
        return 0, 0

    # ===================
    # REPLENISHMENT SOLVER
    # ===================

    def propose_inbound_plan(
        self,
        projection: LedgerProjection,
        spec: ProductSpec,
        inbound: Optional[Mapping[Any, Any]] = None,
        frozen_days: Optional[int] = None,
        today: Optional[date] = None,
    ) -> InboundPlanProposal:
        """
        Adjust planned inbound trucks so every day meets the safety target.

        Days inside the frozen window (already too late to change) and days
        with a recorded actual are left alone. Deficits add trucks on the
        day; surpluses above one truck remove planned trucks. Each change
        carries forward to later days.

        Args:
            projection: Result of project()
            spec: Product spec used for the projection
            inbound: Current planned inbound map
            frozen_days: Lead time gate; defaults to projection.lead_time_days
            today: Reference day; defaults to projection.start_date

        Returns:
            InboundPlanProposal with the full new plan and changed dates
        """
        today = today or projection.start_date
        frozen_days = projection.lead_time_days if frozen_days is None else frozen_days
        frozen_until = add_days(today, max(0, frozen_days - 1))

        units_per_truck = Decimal(spec.units_per_truck)
        target = projection.safety_target

        # Fractional plans (half loads) are kept as entered
        planned = normalize_date_map(inbound)
        changed: set[date] = set()
        cumulative = ZERO
        operations = 0

        if units_per_truck <= 0:
            return InboundPlanProposal(sku=spec.sku, new_inbound=planned)

        for day in projection.days:
            if day.date <= frozen_until or day.is_actual:
                continue

            adjusted = day.balance + cumulative

            if adjusted < target:
                trucks = math.ceil((target - adjusted) / units_per_truck)
                planned[day.date] = planned.get(day.date, ZERO) + trucks
                cumulative += Decimal(trucks) * units_per_truck
                changed.add(day.date)
                operations += 1
            elif adjusted > target + units_per_truck:
                current = planned.get(day.date, ZERO)
                if current <= 0:
                    continue
                removable = math.floor((adjusted - target) / units_per_truck)
                to_remove = min(removable, current)
                if to_remove > 0:
                    planned[day.date] = current - to_remove
                    cumulative -= Decimal(to_remove) * units_per_truck
                    changed.add(day.date)
                    operations += 1

        logger.info(
            "inbound_plan_proposed",
            sku=spec.sku,
            frozen_until=frozen_until.isoformat(),
            updates=operations,
        )

        return InboundPlanProposal(
            sku=spec.sku,
            new_inbound=planned,
            changed_dates=sorted(changed),
            updates_count=operations,
        )


class LedgerService:
    """
    Store-backed ledger projection.

    Resolves the SKU, reads its planning snapshot and anchor from the
    planning store, and runs the projector.
    """

    def __init__(self, product_service=None, store=None):
        self.product_service = product_service or get_product_service()
        self.store = store or get_planning_store()
        self.projector = LedgerProjector()

    def project_sku(
        self,
        sku: str,
        start_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
        safety_stock_loads: Optional[int] = None,
        lead_time_days: Optional[int] = None,
    ) -> LedgerProjection:
        """
        Project the ledger for a stored product.

        Raises:
            ProductNotFoundError: If the SKU is unknown
            InvalidProductSpecError: If a packaging ratio is not positive
        """
        spec = self.product_service.resolve(sku)
        product_id = self.product_service.get_product_id(sku)
        start_date = start_date or date.today()

        snapshot = self.store.load_snapshot(product_id)
        anchor = self.store.get_anchor(product_id)
        if anchor is None:
            logger.warning("inventory_anchor_missing", sku=sku)
            anchor = InventoryAnchor(date=start_date, count=ZERO)

        return self.projector.project_snapshot(
            spec,
            anchor,
            snapshot,
            safety_stock_loads=safety_stock_loads,
            lead_time_days=lead_time_days,
            start_date=start_date,
            horizon_days=horizon_days,
            yard_loads=self.store.get_yard_loads(product_id),
        )

    def project_request(self, request: ProjectionRequest) -> LedgerProjection:
        """Project inline planning data against a stored product spec."""
        spec = self.product_service.resolve(request.sku)
        return self.projector.project_snapshot(
            spec,
            request.anchor,
            request.snapshot,
            safety_stock_loads=request.safety_stock_loads,
            lead_time_days=request.lead_time_days,
            start_date=request.start_date,
            horizon_days=request.horizon_days,
            yard_loads=request.yard_loads,
        )

    # ===================
    # REPLENISHMENT
    # ===================

    def propose_replenishment(
        self,
        sku: str,
        frozen_days: Optional[int] = None,
        start_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
    ) -> InboundPlanProposal:
        """Run the replenishment solver over the stored plan. Nothing is written."""
        spec = self.product_service.resolve(sku)
        product_id = self.product_service.get_product_id(sku)
        projection = self.project_sku(sku, start_date=start_date, horizon_days=horizon_days)
        inbound = self.store.get(product_id, INBOUND_TRUCKS)
        return self.projector.propose_inbound_plan(projection, spec, inbound, frozen_days=frozen_days)

    def apply_replenishment(
        self,
        sku: str,
        frozen_days: Optional[int] = None,
        start_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
    ) -> InboundPlanProposal:
        """Run the solver and persist the changed inbound days."""
        proposal = self.propose_replenishment(sku, frozen_days, start_date, horizon_days)
        if proposal.changed_dates:
            product_id = self.product_service.get_product_id(sku)
            self.store.set(
                product_id,
                INBOUND_TRUCKS,
                {d: proposal.new_inbound[d] for d in proposal.changed_dates},
            )
            logger.info("inbound_plan_applied", sku=sku, changed=len(proposal.changed_dates))
        return proposal

    # ===================
    # PLAN EDITS
    # ===================

    def update_entries(self, sku: str, field: str, entries: dict[str, Any]) -> dict[str, Any]:
        """
        Merge user edits into one of the product's date maps.

        A None value clears that date. Nothing is written unless every key
        is a calendar date.

        Returns:
            The full stored map after the edit, ISO-keyed

        Raises:
            InvalidPlanningFieldError: If field is not a date map
            InvalidPlanningDateError: If any key is not a YYYY-MM-DD date
        """
        if field not in DATE_MAP_FIELDS:
            raise InvalidPlanningFieldError(field, list(DATE_MAP_FIELDS))
        parsed = parse_entry_keys(entries)
        product_id = self.product_service.get_product_id(sku)
        self.store.set(product_id, field, parsed)
        logger.info("planning_entries_updated", sku=sku, field=field, count=len(entries))
        return to_iso_map(self.store.get(product_id, field))

    def set_anchor(self, sku: str, anchor: InventoryAnchor) -> InventoryAnchor:
        """Replace the product's inventory anchor."""
        product_id = self.product_service.get_product_id(sku)
        self.store.set_anchor(product_id, anchor)
        logger.info("inventory_anchor_replaced", sku=sku, date=anchor.date.isoformat())
        return anchor


# Singleton instances
_ledger_projector: Optional[LedgerProjector] = None
_ledger_service: Optional[LedgerService] = None


def get_ledger_projector() -> LedgerProjector:
    """Get or create LedgerProjector instance."""
    global _ledger_projector
    if _ledger_projector is None:
        _ledger_projector = LedgerProjector()
    return _ledger_projector


def get_ledger_service() -> LedgerService:
    """Get or create LedgerService instance."""
    global _ledger_service
    if _ledger_service is None:
        _ledger_service = LedgerService()
    return _ledger_service
