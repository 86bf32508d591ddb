"""
Truck scheduling allocator.

Spreads a day's inbound trucks across the 24-hour clock at the interval
the line burns through one truck, and buckets them into three 8-hour
shifts. PO tags and cancellations are keyed by slot id and re-applied on
every generation.
"""

import math
import re
from typing import Any, Iterable, Mapping, Optional

import structlog

from config import settings
from models.product import ProductSpec
from models.scheduler import ShiftSummary, TruckSchedule, TruckSlot
from exceptions import InvalidShiftStartError
from services.product_service import get_product_service
from services.planning_store import (
    CANCELLED_LOADS,
    PO_ASSIGNMENTS,
    SHIFT_START_TIME,
    get_planning_store,
)

logger = structlog.get_logger(__name__)

SHIFT_NAMES = (
    "Shift 1 (00:00-08:00)",
    "Shift 2 (08:00-16:00)",
    "Shift 3 (16:00-00:00)",
)
SHIFT_HOURS = 8

# Usable delivery window when a day's trucks must be compressed
DELIVERY_WINDOW_HOURS = 23.5

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_shift_start(value: Optional[str]) -> float:
    """
    Convert "HH:MM" to decimal hours.

    Raises:
        InvalidShiftStartError: If the value is not a valid 24-hour time
    """
    match = _HHMM.match((value or "").strip())
    if not match:
        raise InvalidShiftStartError(str(value))
    return int(match.group(1)) + int(match.group(2)) / 60


def format_clock(decimal_hours: float) -> str:
    """
    Format decimal hours as "HH:MM".

    Minutes are rounded; a rounded 60 carries into the hour and hour 24
    wraps to 00.
    """
    hour = math.floor(decimal_hours)
    minute = round((decimal_hours - hour) * 60)
    if minute == 60:
        hour += 1
        minute = 0
    return f"{hour % 24:02d}:{minute:02d}"


def _finite(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


class TruckScheduler:
    """
    Pure truck-arrival allocator.

    Nothing here touches the store: inputs are the current burn rate and
    the persisted PO/cancellation collections, output is a TruckSchedule.
    """

    @staticmethod
    def required_daily_loads(burn_rate: float, cases_per_truck: float) -> int:
        """ceil(burn_rate * 24 / cases_per_truck), 0 when either factor is 0."""
        burn_rate = _finite(burn_rate)
        cases_per_truck = _finite(cases_per_truck)
        if burn_rate <= 0 or cases_per_truck <= 0:
            return 0
        return math.ceil(burn_rate * 24 / cases_per_truck)

    @staticmethod
    def hours_per_truck(burn_rate: float, cases_per_truck: float) -> float:
        """Hours the line takes to consume one truck, 0 when undefined."""
        burn_rate = _finite(burn_rate)
        cases_per_truck = _finite(cases_per_truck)
        if burn_rate <= 0 or cases_per_truck <= 0:
            return 0.0
        return cases_per_truck / burn_rate

    @staticmethod
    def shift_index(raw_decimal: float) -> int:
        """Shift bucket for an arrival hour. Uses the un-rounded hour."""
        return min(int(raw_decimal // SHIFT_HOURS), len(SHIFT_NAMES) - 1)

    def generate(
        self,
        burn_rate: float,
        cases_per_truck: int,
        shift_start_time: Optional[str] = None,
        po_assignments: Optional[Mapping[str, str]] = None,
        cancelled_loads: Optional[Iterable[Any]] = None,
        safety_stock_loads: Optional[int] = None,
        sku: Optional[str] = None,
    ) -> TruckSchedule:
        """
        Generate the daily truck schedule.

        Args:
            burn_rate: Line consumption in cases per hour
            cases_per_truck: Cases one truck delivers
            shift_start_time: "HH:MM" of the first arrival
            po_assignments: Slot id (as string) -> PO tag
            cancelled_loads: Slot ids (as strings) to drop
            safety_stock_loads: Safety stock in truck loads
            sku: Product label carried on the result

        Returns:
            TruckSchedule with active slots and shift counts

        Raises:
            InvalidShiftStartError: If shift_start_time is not HH:MM
        """
        shift_start_time = shift_start_time or settings.default_shift_start
        start_hour = parse_shift_start(shift_start_time)
        po_assignments = po_assignments or {}
        cancelled = {str(c) for c in (cancelled_loads or [])}
        if safety_stock_loads is None:
            safety_stock_loads = settings.safety_stock_loads

        required = self.required_daily_loads(burn_rate, cases_per_truck)
        interval = self.hours_per_truck(burn_rate, cases_per_truck)

        # Ids are assigned before filtering so PO tags stay bound
        slots: list[TruckSlot] = []
        if interval > 0:
            for i in range(required):
                raw = (start_hour + i * interval) % 24
                slot_id = i + 1
                slots.append(TruckSlot(
                    id=slot_id,
                    time=format_clock(raw),
                    raw_decimal=raw,
                    po=po_assignments.get(str(slot_id), "") or "",
                ))

        active = [s for s in slots if str(s.id) not in cancelled]

        loads = [0] * len(SHIFT_NAMES)
        for slot in active:
            loads[self.shift_index(slot.raw_decimal)] += 1

        schedule = TruckSchedule(
            sku=sku,
            burn_rate=_finite(burn_rate),
            cases_per_truck=int(_finite(cases_per_truck)),
            hours_per_truck=interval,
            required_daily_loads=required,
            weekly_loads=required * 7,
            shift_start_time=shift_start_time,
            safety_stock_loads=safety_stock_loads,
            is_high_risk=safety_stock_loads < required,
            shifts=[ShiftSummary(name=n, loads=c) for n, c in zip(SHIFT_NAMES, loads)],
            trucks=active,
            cancelled_ids=sorted(s.id for s in slots if str(s.id) in cancelled),
        )

        logger.debug(
            "truck_schedule_generated",
            sku=sku,
            required_daily_loads=required,
            active=len(active),
            cancelled=len(schedule.cancelled_ids),
        )

        return schedule

    def generate_for_spec(
        self,
        spec: ProductSpec,
        shift_start_time: Optional[str] = None,
        po_assignments: Optional[Mapping[str, str]] = None,
        cancelled_loads: Optional[Iterable[Any]] = None,
        safety_stock_loads: Optional[int] = None,
    ) -> TruckSchedule:
        """generate() using the product's production rate and truck size."""
        return self.generate(
            burn_rate=spec.production_rate,
            cases_per_truck=spec.cases_per_truck,
            shift_start_time=shift_start_time,
            po_assignments=po_assignments,
            cancelled_loads=cancelled_loads,
            safety_stock_loads=safety_stock_loads,
            sku=spec.sku,
        )

    # ===================
    # PERSISTED COLLECTIONS
    # ===================

    @staticmethod
    def assign_po(po_assignments: Optional[Mapping[str, str]], slot_id: Any, po: str) -> dict[str, str]:
        """Return a new assignment map with slot_id tagged (empty tag clears it)."""
        updated = dict(po_assignments or {})
        po = (po or "").strip()
        if po:
            updated[str(slot_id)] = po
        else:
            updated.pop(str(slot_id), None)
        return updated

    @staticmethod
    def toggle_cancelled(cancelled_loads: Optional[Iterable[Any]], slot_id: Any) -> list[str]:
        """Return a new cancellation list with slot_id flipped."""
        current = [str(c) for c in (cancelled_loads or [])]
        key = str(slot_id)
        if key in current:
            return [c for c in current if c != key]
        return current + [key]

    # ===================
    # DOCK MANIFEST
    # ===================

    @staticmethod
    def estimate_delivery_time(
        index: int,
        shift_start_time: str,
        cases_per_truck: float,
        burn_rate: float,
        total_trucks_for_day: int = 0,
    ) -> str:
        """
        Appointment time for the index-th (0-based) truck of a day.

        Trucks are spaced by the run rate. When the day's trucks would not
        fit in the delivery window they are spread evenly across it instead.

        Returns:
            "HH:MM", or "" when the burn rate is 0
        """
        burn_rate = _finite(burn_rate)
        cases_per_truck = _finite(cases_per_truck)
        if burn_rate <= 0:
            return ""

        interval = cases_per_truck / burn_rate
        if total_trucks_for_day > 0 and total_trucks_for_day * interval > DELIVERY_WINDOW_HOURS:
            interval = DELIVERY_WINDOW_HOURS / total_trucks_for_day

        arrival = (parse_shift_start(shift_start_time) + index * interval) % 24
        return format_clock(arrival)


class TruckScheduleService:
    """
    Store-backed truck scheduling.

    Reads the product spec and the persisted shift start, PO tags and
    cancellations, and writes edits back through the planning store.
    """

    def __init__(self, product_service=None, store=None):
        self.product_service = product_service or get_product_service()
        self.store = store or get_planning_store()
        self.scheduler = TruckScheduler()

    def _state(self, product_id: str) -> tuple[Optional[str], dict, list]:
        return (
            self.store.get(product_id, SHIFT_START_TIME),
            self.store.get(product_id, PO_ASSIGNMENTS) or {},
            self.store.get(product_id, CANCELLED_LOADS) or [],
        )

    def get_schedule(self, sku: str, safety_stock_loads: Optional[int] = None) -> TruckSchedule:
        """
        Schedule for a stored product.

        Raises:
            ProductNotFoundError: If the SKU is unknown
        """
        spec = self.product_service.resolve(sku)
        product_id = self.product_service.get_product_id(sku)
        shift_start, po_assignments, cancelled = self._state(product_id)

        return self.scheduler.generate_for_spec(
            spec,
            shift_start_time=shift_start,
            po_assignments=po_assignments,
            cancelled_loads=cancelled,
            safety_stock_loads=safety_stock_loads,
        )

    def set_shift_start(self, sku: str, shift_start_time: str) -> TruckSchedule:
        """Persist a new shift start and return the regenerated schedule."""
        parse_shift_start(shift_start_time)
        product_id = self.product_service.get_product_id(sku)
        self.store.set(product_id, SHIFT_START_TIME, shift_start_time.strip())
        logger.info("shift_start_updated", sku=sku, shift_start_time=shift_start_time)
        return self.get_schedule(sku)

    def assign_po(self, sku: str, slot_id: int, po: str) -> TruckSchedule:
        """Tag a slot with a PO and return the regenerated schedule."""
        product_id = self.product_service.get_product_id(sku)
        _, po_assignments, _ = self._state(product_id)
        self.store.set(product_id, PO_ASSIGNMENTS, self.scheduler.assign_po(po_assignments, slot_id, po))
        logger.info("truck_po_assigned", sku=sku, slot_id=slot_id, po=po)
        return self.get_schedule(sku)

    def toggle_cancelled(self, sku: str, slot_id: int) -> TruckSchedule:
        """Cancel or restore a slot and return the regenerated schedule."""
        product_id = self.product_service.get_product_id(sku)
        _, _, cancelled = self._state(product_id)
        updated = self.scheduler.toggle_cancelled(cancelled, slot_id)
        self.store.set(product_id, CANCELLED_LOADS, updated)
        logger.info("truck_cancellation_toggled", sku=sku, slot_id=slot_id, cancelled=str(slot_id) in updated)
        return self.get_schedule(sku)


# Singleton instances
_truck_scheduler: Optional[TruckScheduler] = None
_truck_schedule_service: Optional[TruckScheduleService] = None


def get_truck_scheduler() -> TruckScheduler:
    """Get or create TruckScheduler instance."""
    global _truck_scheduler
    if _truck_scheduler is None:
        _truck_scheduler = TruckScheduler()
    return _truck_scheduler


def get_truck_schedule_service() -> TruckScheduleService:
    """Get or create TruckScheduleService instance."""
    global _truck_schedule_service
    if _truck_schedule_service is None:
        _truck_schedule_service = TruckScheduleService()
    return _truck_schedule_service
