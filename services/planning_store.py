"""
Keyed planning store.

The engines never hold a key namespace of their own. Everything a user
edits (demand, actuals, inbound trucks, PO tags, cancellations) is read and
written through get(product_id, field) / set(product_id, field, value).

Two implementations:
- SupabasePlanningStore: planning_entries, inventory_snapshots and
  scheduler_settings tables
- InMemoryPlanningStore: process-local cache, also used in tests

Writes are last-write-wins; concurrent editors are not reconciled here.
"""

import threading
from copy import deepcopy
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import structlog

from config import get_supabase_client
from models.planning import AnchorUnit, InventoryAnchor, PlanningSnapshot
from exceptions import DatabaseError, InvalidPlanningDateError, InvalidPlanningFieldError
from utils.date_utils import coerce_quantity, format_date, parse_date

logger = structlog.get_logger(__name__)


# Date-map fields stored as one row per (product, date, field)
DEMAND_PLAN = "demand_plan"
PRODUCTION_ACTUAL = "production_actual"
INBOUND_TRUCKS = "inbound_trucks"
CONFIRMED_INBOUND = "confirmed_inbound"
DATE_MAP_FIELDS = (DEMAND_PLAN, PRODUCTION_ACTUAL, INBOUND_TRUCKS, CONFIRMED_INBOUND)

# Scheduler fields stored as one JSON value per (product, field)
PO_ASSIGNMENTS = "po_assignments"
CANCELLED_LOADS = "cancelled_loads"
SHIFT_START_TIME = "shift_start_time"
SCHEDULER_FIELDS = (PO_ASSIGNMENTS, CANCELLED_LOADS, SHIFT_START_TIME)

ALL_FIELDS = DATE_MAP_FIELDS + SCHEDULER_FIELDS

_SCHEDULER_DEFAULTS: dict[str, Any] = {
    PO_ASSIGNMENTS: {},
    CANCELLED_LOADS: [],
    SHIFT_START_TIME: None,
}


def _check_field(field: str) -> None:
    if field not in ALL_FIELDS:
        raise InvalidPlanningFieldError(field, list(ALL_FIELDS))


def parse_entry_keys(entries: Optional[dict]) -> dict[date, Any]:
    """
    Key an edit by date, rejecting the whole edit if any key is not a date.

    Raises:
        InvalidPlanningDateError: Listing every key that did not parse
    """
    parsed: dict[date, Any] = {}
    invalid: list[str] = []
    for key, value in (entries or {}).items():
        try:
            parsed[parse_date(key)] = value
        except (TypeError, ValueError):
            invalid.append(str(key))
    if invalid:
        raise InvalidPlanningDateError(invalid)
    return parsed


class PlanningStore:
    """
    Interface shared by all planning stores.

    Date-map fields return {date: value}. set() on a date-map field merges
    the given entries; a None value deletes that date.
    """

    def get(self, product_id: str, field: str) -> Any:
        raise NotImplementedError

    def set(self, product_id: str, field: str, value: Any) -> None:
        raise NotImplementedError

    def get_anchor(self, product_id: str) -> Optional[InventoryAnchor]:
        raise NotImplementedError

    def set_anchor(self, product_id: str, anchor: InventoryAnchor) -> None:
        raise NotImplementedError

    def get_yard_loads(self, product_id: str) -> Decimal:
        raise NotImplementedError

    def load_snapshot(self, product_id: str) -> PlanningSnapshot:
        """Read the four date maps for a product in one call."""
        return PlanningSnapshot(
            demand=self._iso(self.get(product_id, DEMAND_PLAN)),
            actuals=self._iso(self.get(product_id, PRODUCTION_ACTUAL)),
            inbound=self._iso(self.get(product_id, INBOUND_TRUCKS)),
            confirmed_inbound=self._iso(self.get(product_id, CONFIRMED_INBOUND)),
        )

    @staticmethod
    def _iso(entries: dict) -> dict[str, Any]:
        return {format_date(parse_date(k)): v for k, v in (entries or {}).items()}


class InMemoryPlanningStore(PlanningStore):
    """Process-local planning store (local cache collaborator)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._fields: dict[tuple[str, str], Any] = {}
        self._anchors: dict[str, InventoryAnchor] = {}
        self._yard: dict[str, Decimal] = {}

    def get(self, product_id: str, field: str) -> Any:
        _check_field(field)
        with self._lock:
            if (product_id, field) in self._fields:
                return deepcopy(self._fields[(product_id, field)])
        if field in DATE_MAP_FIELDS:
            return {}
        return deepcopy(_SCHEDULER_DEFAULTS[field])

    def set(self, product_id: str, field: str, value: Any) -> None:
        _check_field(field)
        if field in DATE_MAP_FIELDS:
            value = parse_entry_keys(value)
        with self._lock:
            if field in DATE_MAP_FIELDS:
                current = dict(self._fields.get((product_id, field), {}))
                for day, qty in value.items():
                    if qty is None:
                        current.pop(day, None)
                    else:
                        current[day] = qty
                self._fields[(product_id, field)] = current
            else:
                self._fields[(product_id, field)] = deepcopy(value)

    def get_anchor(self, product_id: str) -> Optional[InventoryAnchor]:
        with self._lock:
            return self._anchors.get(product_id)

    def set_anchor(self, product_id: str, anchor: InventoryAnchor) -> None:
        with self._lock:
            self._anchors[product_id] = anchor

    def get_yard_loads(self, product_id: str) -> Decimal:
        with self._lock:
            return self._yard.get(product_id, Decimal("0"))

    def set_yard_loads(self, product_id: str, loads: Any) -> None:
        with self._lock:
            self._yard[product_id] = coerce_quantity(loads)


class SupabasePlanningStore(PlanningStore):
    """
    Planning store backed by Supabase tables.

    Tables:
        planning_entries (product_id, date, entry_type, value)
        inventory_snapshots (product_id, date, location, quantity_pallets)
        scheduler_settings (product_id, key, value_json)
    """

    def __init__(self):
        self.db = get_supabase_client()

    # ===================
    # KEYED FIELDS
    # ===================

    def get(self, product_id: str, field: str) -> Any:
        _check_field(field)
        if field in DATE_MAP_FIELDS:
            return self._get_date_map(product_id, field)
        return self._get_scheduler_value(product_id, field)

    def set(self, product_id: str, field: str, value: Any) -> None:
        _check_field(field)
        if field in DATE_MAP_FIELDS:
            self._set_date_map(product_id, field, value or {})
        else:
            self._set_scheduler_value(product_id, field, value)

    def _get_date_map(self, product_id: str, field: str) -> dict[date, Any]:
        try:
            result = (
                self.db.table("planning_entries")
                .select("date, value")
                .eq("product_id", product_id)
                .eq("entry_type", field)
                .execute()
            )
        except Exception as e:
            logger.error(
                "planning_entries_fetch_failed",
                product_id=product_id,
                field=field,
                error=str(e)
            )
            raise DatabaseError("select", str(e), {"table": "planning_entries"})

        entries: dict[date, Any] = {}
        for row in result.data or []:
            try:
                entries[parse_date(row["date"])] = row.get("value")
            except (KeyError, TypeError, ValueError):
                logger.warning("planning_entry_bad_date", product_id=product_id, row=row)
        return entries

    def _set_date_map(self, product_id: str, field: str, entries: dict) -> None:
        # Every key must parse before the first delete runs
        parsed = parse_entry_keys(entries)
        upserts = []
        try:
            for key, value in parsed.items():
                day = format_date(key)
                if value is None:
                    (
                        self.db.table("planning_entries")
                        .delete()
                        .eq("product_id", product_id)
                        .eq("date", day)
                        .eq("entry_type", field)
                        .execute()
                    )
                else:
                    upserts.append({
                        "product_id": product_id,
                        "date": day,
                        "entry_type": field,
                        "value": float(coerce_quantity(value)),
                    })
            if upserts:
                (
                    self.db.table("planning_entries")
                    .upsert(upserts, on_conflict="product_id, date, entry_type")
                    .execute()
                )
        except Exception as e:
            logger.error(
                "planning_entries_write_failed",
                product_id=product_id,
                field=field,
                error=str(e)
            )
            raise DatabaseError("upsert", str(e), {"table": "planning_entries"})

        logger.info(
            "planning_entries_saved",
            product_id=product_id,
            field=field,
            upserted=len(upserts),
            deleted=len(entries) - len(upserts)
        )

    def _get_scheduler_value(self, product_id: str, field: str) -> Any:
        try:
            result = (
                self.db.table("scheduler_settings")
                .select("value_json")
                .eq("product_id", product_id)
                .eq("key", field)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("scheduler_setting_fetch_failed", product_id=product_id, field=field, error=str(e))
            raise DatabaseError("select", str(e), {"table": "scheduler_settings"})

        if not result.data or result.data[0].get("value_json") is None:
            return deepcopy(_SCHEDULER_DEFAULTS[field])
        return result.data[0]["value_json"]

    def _set_scheduler_value(self, product_id: str, field: str, value: Any) -> None:
        try:
            (
                self.db.table("scheduler_settings")
                .upsert(
                    {"product_id": product_id, "key": field, "value_json": value},
                    on_conflict="product_id, key",
                )
                .execute()
            )
        except Exception as e:
            logger.error("scheduler_setting_write_failed", product_id=product_id, field=field, error=str(e))
            raise DatabaseError("upsert", str(e), {"table": "scheduler_settings"})

    # ===================
    # INVENTORY SNAPSHOTS
    # ===================

    def _latest_snapshot(self, product_id: str, location: str) -> Optional[dict]:
        try:
            result = (
                self.db.table("inventory_snapshots")
                .select("*")
                .eq("product_id", product_id)
                .eq("location", location)
                .order("date", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("inventory_snapshot_fetch_failed", product_id=product_id, location=location, error=str(e))
            raise DatabaseError("select", str(e), {"table": "inventory_snapshots"})
        return result.data[0] if result.data else None

    def get_anchor(self, product_id: str) -> Optional[InventoryAnchor]:
        row = self._latest_snapshot(product_id, "floor")
        if not row:
            return None
        return InventoryAnchor(
            date=parse_date(row["date"]),
            count=coerce_quantity(row.get("quantity_pallets")),
            unit=AnchorUnit.PALLETS,
        )

    def set_anchor(self, product_id: str, anchor: InventoryAnchor) -> None:
        count = anchor.count
        if anchor.unit != AnchorUnit.PALLETS:
            raise InvalidPlanningFieldError("anchor.unit", [AnchorUnit.PALLETS.value])
        try:
            (
                self.db.table("inventory_snapshots")
                .upsert(
                    {
                        "product_id": product_id,
                        "date": format_date(anchor.date),
                        "location": "floor",
                        "quantity_pallets": float(count),
                    },
                    on_conflict="product_id, date, location",
                )
                .execute()
            )
        except Exception as e:
            logger.error("inventory_anchor_write_failed", product_id=product_id, error=str(e))
            raise DatabaseError("upsert", str(e), {"table": "inventory_snapshots"})

        logger.info("inventory_anchor_saved", product_id=product_id, date=format_date(anchor.date))

    def get_yard_loads(self, product_id: str) -> Decimal:
        row = self._latest_snapshot(product_id, "yard")
        if not row:
            return Decimal("0")
        return coerce_quantity(row.get("quantity_pallets"))


# Singleton instance
_planning_store: Optional[PlanningStore] = None


def get_planning_store() -> PlanningStore:
    """Get or create the Supabase-backed planning store."""
    global _planning_store
    if _planning_store is None:
        _planning_store = SupabasePlanningStore()
    return _planning_store
