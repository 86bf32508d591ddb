"""
Unit tests for the inventory ledger projector and replenishment solver.

Reference plan used by most tests (12 bottles/case, 24,000 bottles/truck,
1,200 bottles/pallet):

    anchor 2024-01-01: 50 pallets = 60,000 bottles
    demand 1,000 cases/day for 10 days, actual 800 on 2024-01-02
    1 inbound truck on 2024-01-03

    end-of-day balances:
    48000, 38400, 50400, 38400, 26400, 14400, 2400, -9600, -21600, -33600

Run: pytest tests/unit/test_ledger_service.py -v
"""

import random
import pytest
from datetime import date
from decimal import Decimal

from config import settings
from services.ledger_service import (
    LedgerProjector,
    LedgerService,
    build_recommendations,
)
from services.planning_store import DEMAND_PLAN, INBOUND_TRUCKS, PRODUCTION_ACTUAL
from models.planning import (
    AnchorUnit,
    InventoryAnchor,
    OrderNeed,
    OrderStatus,
    PlanningSnapshot,
    ProjectionRequest,
)
from exceptions import (
    InvalidPlanningDateError,
    InvalidPlanningFieldError,
    InvalidProductSpecError,
)

from tests.factories import PlanningDataFactory, ProductSpecFactory


START = date(2024, 1, 1)
EXPECTED_BALANCES = [48000, 38400, 50400, 38400, 26400, 14400, 2400, -9600, -21600, -33600]


@pytest.fixture
def projector() -> LedgerProjector:
    return LedgerProjector()


@pytest.fixture
def reference_plan() -> dict:
    return {
        "demand": PlanningDataFactory.daily(START, 10, 1000),
        "actuals": {"2024-01-02": 800},
        "inbound": {"2024-01-03": 1},
    }


def project_reference(projector, spec, plan, **overrides):
    kwargs = dict(
        safety_stock_loads=1,
        lead_time_days=2,
        start_date=START,
        horizon_days=10,
    )
    kwargs.update(overrides)
    anchor = kwargs.pop("anchor", PlanningDataFactory.anchor(START, 50))
    return projector.project(spec, anchor, **plan, **kwargs)


class TestLedgerBalances:
    """Tests for the daily balance walk"""

    def test_reference_balances(self, projector, sample_spec, reference_plan):
        """Should apply demand, actual override and inbound per day."""
        # Act
        projection = project_reference(projector, sample_spec, reference_plan)

        # Assert
        assert [d.balance for d in projection.days] == [Decimal(b) for b in EXPECTED_BALANCES]
        assert projection.floor_inventory == Decimal("60000")
        assert projection.floor_pallets == Decimal("50.00")
        assert projection.days[0].projected_pallets == Decimal("40.00")

    def test_actual_overrides_demand(self, projector, sample_spec, reference_plan):
        """The recorded actual replaces the plan for its day only."""
        projection = project_reference(projector, sample_spec, reference_plan)

        day2 = projection.days[1]
        assert day2.is_actual is True
        assert day2.demand == Decimal("9600")
        assert projection.days[2].is_actual is False

    def test_unit_anchor_goes_negative(self, projector):
        """500 bottles on hand against 1,000 cases of 12 is a risk day."""
        # Arrange
        spec = ProductSpecFactory.create(units_per_case=12)
        anchor = InventoryAnchor(date=date(2024, 1, 1), count=500, unit=AnchorUnit.UNITS)

        # Act
        projection = projector.project(
            spec,
            anchor,
            demand={"2024-01-01": 1000},
            start_date=date(2024, 1, 1),
            horizon_days=1,
        )

        # Assert
        day = projection.days[0]
        assert day.balance == Decimal("-11500")
        assert day.is_safety_risk is True
        assert projection.runway_days == 0
        assert projection.first_stockout_date == date(2024, 1, 1)
        assert projection.days_of_supply == Decimal("0.04")

    def test_conservation_holds_for_noisy_plan(self, projector, sample_spec):
        """balance[d] - balance[d-1] is exactly that day's supply minus demand."""
        # Arrange
        rng = random.Random(7)
        days = 21
        demand = {k: rng.choice([0, 250, 999, 1500, "abc", -5, 12.5]) for k in PlanningDataFactory.daily(START, days, 0)}
        actuals = {k: rng.randint(0, 2000) for k in list(demand)[::3]}
        inbound = {k: rng.choice([0, 1, 2, "x"]) for k in list(demand)[::2]}
        anchor = PlanningDataFactory.anchor(date(2024, 1, 9), 37)

        # Act
        projection = projector.project(
            sample_spec,
            anchor,
            demand=demand,
            actuals=actuals,
            inbound=inbound,
            start_date=START,
            horizon_days=days,
        )

        # Assert
        previous = projection.floor_inventory
        for day in projection.days:
            assert day.balance - previous == day.supply - day.demand
            previous = day.balance

    def test_anchor_replacement_is_idempotent(self, projector, sample_spec, reference_plan):
        """Re-anchoring on a projected balance reproduces the same ledger."""
        # Arrange
        first = project_reference(projector, sample_spec, reference_plan)
        # Start of 2024-01-04 equals end of 2024-01-03
        reanchor = InventoryAnchor(
            date=date(2024, 1, 4),
            count=first.days[2].balance,
            unit=AnchorUnit.UNITS,
        )

        # Act
        second = project_reference(projector, sample_spec, reference_plan, anchor=reanchor)

        # Assert
        assert [d.balance for d in second.days] == [d.balance for d in first.days]
        assert second.floor_inventory == first.floor_inventory

    def test_backward_extrapolation_from_future_anchor(self, projector, sample_spec):
        """An anchor after start_date is walked back through the deltas."""
        # Arrange
        anchor = PlanningDataFactory.anchor(date(2024, 1, 5), 20)  # 24,000 bottles

        # Act
        projection = projector.project(
            sample_spec,
            anchor,
            demand=PlanningDataFactory.daily(START, 6, 1000),
            start_date=START,
            horizon_days=6,
            safety_stock_loads=0,
        )

        # Assert
        assert projection.floor_inventory == Decimal("72000")
        assert projection.days[3].balance == Decimal("24000")

    def test_start_after_anchor_rolls_forward(self, projector, sample_spec, reference_plan):
        """Starting later matches the tail of the full projection."""
        full = project_reference(projector, sample_spec, reference_plan)

        later = project_reference(
            projector, sample_spec, reference_plan, start_date=date(2024, 1, 4), horizon_days=7
        )

        assert later.floor_inventory == Decimal("50400")
        assert [d.balance for d in later.days] == [d.balance for d in full.days[3:]]

    def test_confirmed_inbound_replaces_plan(self, projector, sample_spec, reference_plan):
        """Confirmed PO loads override the planned count for their day."""
        # Act
        projection = project_reference(
            projector,
            sample_spec,
            {**reference_plan, "confirmed_inbound": {"2024-01-03": 2, "2024-01-04": 0}},
        )

        # Assert
        day3, day4 = projection.days[2], projection.days[3]
        assert day3.supply == Decimal("48000")
        assert day3.is_confirmed is True
        assert day4.is_confirmed is False
        assert day3.balance == Decimal("74400")

    def test_bad_values_coerce_to_zero(self, projector, sample_spec):
        """Non-numeric and negative entries count as no activity."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 10),
            demand={"2024-01-01": "abc", "2024-01-02": -5, "bad-key": 100},
            inbound={"2024-01-01": float("nan")},
            start_date=START,
            horizon_days=2,
        )

        assert [d.balance for d in projection.days] == [Decimal("12000"), Decimal("12000")]

    def test_horizon_defaults_from_settings(self, projector, sample_spec):
        projection = projector.project(sample_spec, PlanningDataFactory.anchor(START, 0), start_date=START)

        assert len(projection.days) == settings.ledger_horizon_days

    def test_invalid_spec_raises(self, projector):
        """A zero truck size is a configuration error."""
        spec = ProductSpecFactory.create(units_per_truck=0)

        with pytest.raises(InvalidProductSpecError) as exc_info:
            projector.project(spec, PlanningDataFactory.anchor(START, 0), start_date=START)

        assert exc_info.value.details["field"] == "units_per_truck"


class TestLedgerFlags:
    """Tests for risk, runway, security and overflow"""

    def test_runway_and_dates(self, projector, sample_spec, reference_plan):
        projection = project_reference(projector, sample_spec, reference_plan)

        assert projection.safety_target == Decimal("24000")
        assert projection.runway_days == 7
        assert projection.first_stockout_date == date(2024, 1, 8)
        assert projection.first_safety_breach_date == date(2024, 1, 6)
        assert projection.days_of_supply == Decimal("7.20")
        assert projection.first_overflow_date is None
        assert projection.is_secure is True

    def test_no_risk_runway_equals_horizon(self, projector, sample_spec):
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 10),
            start_date=START,
            horizon_days=5,
            safety_stock_loads=0,
        )

        assert projection.runway_days == 5
        assert projection.days_of_supply == Decimal("5")
        assert projection.first_stockout_date is None

    def test_overflow_above_target_plus_two_loads(self, projector, sample_spec):
        """120,000 bottles exceeds 24,000 + 2 x 24,000."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 100),
            start_date=START,
            horizon_days=1,
            safety_stock_loads=1,
        )

        assert projection.days[0].is_overflow is True
        assert projection.first_overflow_date == START

    def test_yard_loads_count_toward_security(self, projector, sample_spec):
        """Floor alone is short, floor plus yard meets the target."""
        anchor = PlanningDataFactory.anchor(START, 20)  # one truck of stock
        common = dict(start_date=START, horizon_days=1, safety_stock_loads=2)

        without_yard = projector.project(sample_spec, anchor, **common)
        with_yard = projector.project(sample_spec, anchor, yard_loads=1, **common)

        assert without_yard.is_secure is False
        assert with_yard.is_secure is True
        # Yard stock is not on the floor
        assert with_yard.days[0].balance == without_yard.days[0].balance


class TestPurchasingAdvice:
    """Tests for order recommendations and the lead-time KPI"""

    def test_rolling_wave_recommendations(self, projector, sample_spec, reference_plan):
        """Earlier recommended trucks carry forward to later days."""
        projection = project_reference(projector, sample_spec, reference_plan)

        recs = projection.recommendations
        assert [r.order_date for r in recs] == [date(2024, 1, 4), date(2024, 1, 6), date(2024, 1, 8)]
        assert [r.needs[0].need_date for r in recs] == [date(2024, 1, 6), date(2024, 1, 8), date(2024, 1, 10)]
        assert all(r.trucks == 1 for r in recs)
        assert all(r.status == OrderStatus.UPCOMING for r in recs)
        assert projection.upcoming == recs

    def test_overdue_and_today_status(self, projector, sample_spec):
        """Needs inside the lead window are already late or due today."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 0),
            demand=PlanningDataFactory.daily(START, 3, 1000),
            start_date=START,
            horizon_days=3,
            safety_stock_loads=0,
            lead_time_days=2,
        )

        recs = projection.recommendations
        assert [(r.order_date, r.status) for r in recs] == [
            (date(2023, 12, 30), OrderStatus.OVERDUE),
            (date(2024, 1, 1), OrderStatus.TODAY),
        ]
        assert projection.overdue_or_today == recs
        assert recs[0].is_actionable is True

    def test_needs_sharing_order_date_merge(self):
        """Trucks for the same order date are summed into one recommendation."""
        needs = [
            OrderNeed(need_date=date(2024, 1, 7), trucks=1),
            OrderNeed(need_date=date(2024, 1, 5), trucks=2),
            OrderNeed(need_date=date(2024, 1, 5), trucks=1),
        ]

        recs = build_recommendations(needs, lead_time_days=2, today=date(2024, 1, 3))

        assert len(recs) == 2
        assert recs[0].order_date == date(2024, 1, 3)
        assert recs[0].trucks == 3
        assert len(recs[0].needs) == 2
        assert recs[0].status == OrderStatus.TODAY
        assert recs[1].trucks == 1

    def test_lead_time_kpi_suggests_cancel(self, projector, sample_spec, reference_plan):
        """84,000 available vs 57,600 needed leaves one spare truck."""
        projection = project_reference(projector, sample_spec, reference_plan)

        assert projection.trucks_to_order == 0
        assert projection.trucks_to_cancel == 1

    def test_lead_time_kpi_suggests_order(self, projector, sample_spec):
        """Empty floor with demand inside the lead window needs trucks now."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 0),
            demand=PlanningDataFactory.daily(START, 5, 1000),
            start_date=START,
            horizon_days=5,
            safety_stock_loads=1,
            lead_time_days=2,
        )

        # 36,000 demand + 24,000 safety over 0 available
        assert projection.trucks_to_order == 3
        assert projection.trucks_to_cancel == 0

    def test_cancel_capped_by_scheduled_trucks(self, projector, sample_spec):
        """Cannot cancel trucks that are not scheduled."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 200),
            start_date=START,
            horizon_days=3,
            safety_stock_loads=0,
        )

        assert projection.trucks_to_cancel == 0


class TestPlanPosition:
    """Tests for the whole-plan KPIs and planned orders"""

    def test_downtime_reduces_effective_demand(self, projector, reference_plan):
        """2h down at 500 cases/hr removes 1,000 cases from the remaining run."""
        # Arrange
        spec = ProductSpecFactory.create(downtime_hours=2)

        # Act
        projection = project_reference(projector, spec, reference_plan)

        # Assert
        assert projection.scheduled_cases == Decimal("9800")
        assert projection.lost_production_cases == Decimal("1000")
        assert projection.effective_scheduled_cases == Decimal("8800")
        assert projection.total_incoming_trucks == Decimal("1")
        # 60,000 floor + 24,000 inbound - 8,800 cases x 12
        assert projection.net_inventory == Decimal("-21600")

    def test_downtime_leaves_daily_ledger_alone(self, projector, sample_spec, reference_plan):
        spec = ProductSpecFactory.create(downtime_hours=2)

        with_downtime = project_reference(projector, spec, reference_plan)
        without = project_reference(projector, sample_spec, reference_plan)

        assert [d.balance for d in with_downtime.days] == [d.balance for d in without.days]
        assert without.lost_production_cases == 0
        assert without.effective_scheduled_cases == without.scheduled_cases

    def test_lost_production_never_goes_below_zero(self, projector):
        spec = ProductSpecFactory.create(downtime_hours=100)

        projection = projector.project(
            spec,
            PlanningDataFactory.anchor(START, 10),
            demand={"2024-01-01": 50},
            start_date=START,
            horizon_days=1,
        )

        assert projection.effective_scheduled_cases == 0
        assert projection.net_inventory == Decimal("12000")

    def test_past_days_excluded_from_position(self, projector, sample_spec, reference_plan):
        projection = project_reference(
            projector, sample_spec, reference_plan, start_date=date(2024, 1, 4), horizon_days=7
        )

        assert projection.scheduled_cases == Decimal("7000")
        assert projection.total_incoming_trucks == 0

    def test_planned_orders_by_order_date(self, projector, sample_spec, reference_plan):
        """The planned truck on Jan 3 must be ordered on Jan 1 with a 2-day lead."""
        projection = project_reference(projector, sample_spec, reference_plan)

        assert len(projection.planned_orders) == 1
        order = projection.planned_orders[0]
        assert order.order_date == START
        assert order.status == OrderStatus.TODAY
        assert order.trucks == 1
        assert order.needs[0].need_date == date(2024, 1, 3)

    def test_confirmed_loads_drop_out_of_planned_orders(self, projector, sample_spec, reference_plan):
        plan = {
            **reference_plan,
            "inbound": {"2024-01-03": 1, "2024-01-05": 3},
            "confirmed_inbound": {"2024-01-03": 1, "2024-01-05": 1},
        }

        projection = project_reference(projector, sample_spec, plan)

        assert [(o.order_date, o.trucks) for o in projection.planned_orders] == [
            (date(2024, 1, 3), 2),
        ]

    def test_partial_planned_load_rounds_up(self, projector, sample_spec, reference_plan):
        plan = {**reference_plan, "inbound": {"2024-01-06": 1.5}}

        projection = project_reference(projector, sample_spec, plan)

        assert projection.planned_orders[0].trucks == 2
        assert projection.planned_orders[0].status == OrderStatus.UPCOMING


class TestReplenishmentSolver:
    """Tests for LedgerProjector.propose_inbound_plan()"""

    def test_proposal_meets_safety_target(self, projector, sample_spec, reference_plan):
        # Arrange
        projection = project_reference(projector, sample_spec, reference_plan)

        # Act
        proposal = projector.propose_inbound_plan(
            projection, sample_spec, reference_plan["inbound"], frozen_days=2
        )

        # Assert
        assert proposal.new_inbound == {
            date(2024, 1, 3): 0,
            date(2024, 1, 4): 1,
            date(2024, 1, 6): 1,
            date(2024, 1, 8): 1,
            date(2024, 1, 10): 1,
        }
        assert proposal.updates_count == 5

        replanned = project_reference(
            projector, sample_spec, {**reference_plan, "inbound": proposal.new_inbound}
        )
        assert all(d.balance >= replanned.safety_target for d in replanned.days)

    def test_frozen_window_is_untouched(self, projector, sample_spec, reference_plan):
        projection = project_reference(projector, sample_spec, reference_plan)

        proposal = projector.propose_inbound_plan(
            projection, sample_spec, reference_plan["inbound"], frozen_days=10
        )

        assert proposal.changed_dates == []
        assert proposal.new_inbound == {date(2024, 1, 3): 1}

    def test_fractional_plan_is_not_truncated(self, projector, sample_spec, reference_plan):
        """Half a load stays half a load in the proposal."""
        plan = {**reference_plan, "inbound": {"2024-01-03": 1.5}}
        projection = project_reference(projector, sample_spec, plan)

        proposal = projector.propose_inbound_plan(
            projection, sample_spec, plan["inbound"], frozen_days=10
        )

        assert proposal.new_inbound == {date(2024, 1, 3): 1.5}

    def test_days_with_actuals_are_skipped(self, projector, sample_spec):
        """A day that already happened is never re-planned."""
        projection = projector.project(
            sample_spec,
            PlanningDataFactory.anchor(START, 0),
            demand={"2024-01-05": 1000},
            actuals={"2024-01-05": 1000},
            start_date=START,
            horizon_days=5,
            safety_stock_loads=0,
        )

        proposal = projector.propose_inbound_plan(projection, sample_spec, {}, frozen_days=0)

        assert date(2024, 1, 5) not in proposal.changed_dates


class TestLedgerService:
    """Tests for the store-backed LedgerService"""

    def _seed(self, store, plan):
        store.set("prod-20oz", DEMAND_PLAN, plan["demand"])
        store.set("prod-20oz", PRODUCTION_ACTUAL, plan["actuals"])
        store.set("prod-20oz", INBOUND_TRUCKS, plan["inbound"])
        store.set_anchor("prod-20oz", PlanningDataFactory.anchor(START, 50))

    def test_project_sku_reads_store(self, mock_product_service, memory_store, reference_plan):
        # Arrange
        self._seed(memory_store, reference_plan)
        service = LedgerService(product_service=mock_product_service, store=memory_store)

        # Act
        projection = service.project_sku(
            "20oz", start_date=START, horizon_days=10, safety_stock_loads=1, lead_time_days=2
        )

        # Assert
        assert [d.balance for d in projection.days] == [Decimal(b) for b in EXPECTED_BALANCES]
        mock_product_service.resolve.assert_called_once_with("20oz")

    def test_missing_anchor_starts_empty(self, mock_product_service, memory_store):
        service = LedgerService(product_service=mock_product_service, store=memory_store)

        projection = service.project_sku("20oz", start_date=START, horizon_days=3)

        assert projection.floor_inventory == Decimal("0")

    def test_project_request_uses_inline_data(self, mock_product_service, memory_store):
        service = LedgerService(product_service=mock_product_service, store=memory_store)
        request = ProjectionRequest(
            sku="20oz",
            anchor=InventoryAnchor(date=START, count=500, unit=AnchorUnit.UNITS),
            snapshot=PlanningSnapshot(demand={"2024-01-01": 1000}),
            start_date=START,
            horizon_days=1,
        )

        projection = service.project_request(request)

        assert projection.days[0].balance == Decimal("-11500")

    def test_apply_replenishment_writes_changed_days(self, mock_product_service, memory_store, reference_plan):
        # Arrange
        self._seed(memory_store, reference_plan)
        service = LedgerService(product_service=mock_product_service, store=memory_store)

        # Act
        proposal = service.apply_replenishment("20oz", frozen_days=2, start_date=START, horizon_days=10)

        # Assert
        stored = memory_store.get("prod-20oz", INBOUND_TRUCKS)
        for day in proposal.changed_dates:
            assert stored[day] == proposal.new_inbound[day]

    def test_update_entries_merges_and_returns_map(self, mock_product_service, memory_store):
        service = LedgerService(product_service=mock_product_service, store=memory_store)

        service.update_entries("20oz", DEMAND_PLAN, {"2024-01-01": 100})
        result = service.update_entries("20oz", DEMAND_PLAN, {"2024-01-02": 200, "2024-01-01": None})

        assert result == {"2024-01-02": 200}

    def test_update_entries_rejects_scheduler_field(self, mock_product_service, memory_store):
        service = LedgerService(product_service=mock_product_service, store=memory_store)

        with pytest.raises(InvalidPlanningFieldError):
            service.update_entries("20oz", "po_assignments", {"1": "PO"})

    def test_update_entries_with_bad_date_writes_nothing(self, mock_product_service, memory_store):
        """One unparseable key rejects the whole edit, clears included."""
        # Arrange
        service = LedgerService(product_service=mock_product_service, store=memory_store)
        service.update_entries("20oz", DEMAND_PLAN, {"2024-01-01": 100})

        # Act
        with pytest.raises(InvalidPlanningDateError) as exc_info:
            service.update_entries(
                "20oz", DEMAND_PLAN, {"2024-01-01": None, "Jan 2": 3, "2024-01-03": 7}
            )

        # Assert
        assert exc_info.value.status_code == 422
        assert exc_info.value.details["invalid_keys"] == ["Jan 2"]
        assert memory_store.get("prod-20oz", DEMAND_PLAN) == {date(2024, 1, 1): 100}
