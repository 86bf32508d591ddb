"""
Shared test fixtures.
"""

import sys
from pathlib import Path

# Add project root to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timezone
from typing import Generator

from models.product import ProductSpec
from services.planning_store import InMemoryPlanningStore


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, data: list = None, count: int = None, log: list = None, table: str = None):
        self._data = data or []
        self._count = count
        self._is_single = False
        self._log = log if log is not None else []
        self._table = table
        self.filters: list[tuple[str, object]] = []

    def select(self, *args, **kwargs):
        return self

    def insert(self, data):
        # Simulate insert - add id and timestamps
        if isinstance(data, dict):
            data = [data]
        for item in data:
            item.setdefault("id", "test-uuid-123")
            item["created_at"] = _now()
        self._data = data
        self._log.append((self._table, "insert", data))
        return self

    def upsert(self, data, on_conflict: str = None, **kwargs):
        rows = [data] if isinstance(data, dict) else list(data)
        self._data = rows
        self._log.append((self._table, "upsert", rows, on_conflict))
        return self

    def update(self, data):
        updated_data = [{**item, **data} for item in self._data]
        self._data = updated_data if updated_data else [data]
        self._log.append((self._table, "update", data))
        return self

    def delete(self):
        self._log.append((self._table, "delete", self.filters))
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def neq(self, column, value):
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, **kwargs):
        return self

    def range(self, start, end):
        return self

    def limit(self, count):
        return self

    def execute(self) -> MockSupabaseResponse:
        if self._is_single:
            # Return first item or empty for single()
            data = self._data[0] if self._data else None
            return MockSupabaseResponse(
                data=data,
                count=1 if data else 0
            )
        return MockSupabaseResponse(
            data=self._data,
            count=self._count if self._count is not None else len(self._data)
        )


class MockSupabaseTable:
    """Mock Supabase table with configurable responses."""

    def __init__(self, name: str, data: list = None, count: int = None, log: list = None):
        self._name = name
        self._data = data or []
        self._count = count
        self._log = log if log is not None else []

    def _query(self) -> MockSupabaseQuery:
        return MockSupabaseQuery(self._data.copy(), self._count, self._log, self._name)

    def select(self, *args, **kwargs):
        return self._query()

    def insert(self, data):
        return self._query().insert(data)

    def upsert(self, data, **kwargs):
        return self._query().upsert(data, **kwargs)

    def update(self, data):
        return self._query().update(data)

    def delete(self):
        return self._query().delete()


class MockSupabaseClient:
    """Mock Supabase client. Writes are recorded in `writes`."""

    def __init__(self):
        self._tables = {}
        self._errors = {}
        self.writes: list[tuple] = []

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure mock data for a table."""
        self._tables[table_name] = {"data": data, "count": count}

    def set_table_error(self, table_name: str, error: Exception):
        """Make every query on a table raise."""
        self._errors[table_name] = error

    def table(self, name: str) -> MockSupabaseTable:
        """Get mock table."""
        if name in self._errors:
            raise self._errors[name]
        config = self._tables.get(name, {"data": [], "count": None})
        return MockSupabaseTable(name, config["data"], config["count"], self.writes)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("products", [
                {"id": "1", "name": "20oz", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("products", [...])
            # Now any code using get_supabase_client() gets the mock
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.product_service.get_supabase_client", return_value=mock_supabase):
            with patch("services.planning_store.get_supabase_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def sample_product_row() -> dict:
    """Sample products row (20oz bottles)."""
    return {
        "id": "prod-20oz",
        "name": "20oz",
        "bottles_per_case": 12,
        "cases_per_pallet": 100,
        "bottles_per_truck": 24000,
        "pallets_per_truck": None,
        "user_id": "owner-1",
        "created_at": "2024-01-01T08:00:00Z",
    }


@pytest.fixture
def sample_settings_row() -> dict:
    """Sample production_settings row."""
    return {
        "product_id": "prod-20oz",
        "production_rate": 500,
        "downtime_hours": 2,
    }


@pytest.fixture
def sample_spec() -> ProductSpec:
    """
    Resolved spec with round numbers.

    12 bottles/case, 100 cases/pallet, 24,000 bottles/truck
    -> 2,000 cases/truck, 20 pallets/truck, 1,200 bottles/pallet.
    """
    return ProductSpec(
        sku="20oz",
        units_per_case=12,
        cases_per_pallet=100,
        units_per_truck=24000,
        production_rate=500,
    )


@pytest.fixture
def memory_store() -> InMemoryPlanningStore:
    """Empty process-local planning store."""
    return InMemoryPlanningStore()


@pytest.fixture
def mock_product_service(sample_spec) -> MagicMock:
    """Product service stub that resolves every SKU to sample_spec."""
    service = MagicMock()
    service.resolve.return_value = sample_spec
    service.get_product_id.side_effect = lambda sku: f"prod-{sku}"
    service.get_all_skus.return_value = [sample_spec.sku]
    return service


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client():
    """
    Create FastAPI test client.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/health")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
