"""
Shared test fixtures.

The Supabase double keeps rows in memory per table, applies filters, ordering
and limits, and enforces unique constraints the way the production schema
does (raising a postgrest APIError with SQLSTATE 23505).
"""

import os
import sys
from pathlib import Path

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import copy
import pytest
from collections import defaultdict
from contextlib import ExitStack
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Generator, Optional
from unittest.mock import patch
from uuid import uuid4

from postgrest.exceptions import APIError

SERVICE_MODULES = [
    "services.stage_ledger_service",
    "services.qc_service",
    "services.production_progress_service",
    "services.sync_log_service",
    "services.financial_stage_service",
    "services.invoice_queue_service",
    "services.shipping_quote_service",
]

SINGLETONS = [
    ("services.stage_ledger_service", "_stage_ledger_service"),
    ("services.qc_service", "_qc_service"),
    ("services.production_progress_service", "_production_progress_service"),
    ("services.sync_log_service", "_sync_log_service"),
    ("services.financial_stage_service", "_financial_stage_service"),
    ("services.invoice_queue_service", "_invoice_queue_service"),
    ("services.shipping_quote_service", "_shipping_quote_service"),
    ("services.permission_service", "_permission_checker"),
    ("integrations.accounting", "_accounting_client"),
    ("integrations.carrier", "_carrier_client"),
]

CLOCK_START = datetime(2026, 1, 5, 8, 0, 0)


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    return value


def _sort_key(value):
    value = _plain(value)
    return (value is None, 0 if value is None else value)


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


class UniqueConstraint:
    """Unique index over `columns`, optionally partial (only rows matching `where`)."""

    def __init__(self, name: str, columns: tuple, where: Optional[Callable[[dict], bool]] = None):
        self.name = name
        self.columns = columns
        self.where = where

    def applies(self, row: dict) -> bool:
        return self.where is None or self.where(row)

    def key(self, row: dict) -> tuple:
        return tuple(_plain(row.get(column)) for column in self.columns)


class MockSupabaseQuery:
    """Chainable query builder over MockSupabaseClient's tables."""

    def __init__(self, client: "MockSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._operation = "select"
        self._payload = None
        self._filters: list[Callable[[dict], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._count: Optional[str] = None
        self._is_single = False

    # Operations

    def select(self, *args, count: Optional[str] = None, **kwargs):
        self._operation = "select"
        self._count = count
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data: dict):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    # Filters

    def eq(self, column, value):
        self._filters.append(lambda row: _plain(row.get(column)) == _plain(value))
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: _plain(row.get(column)) != _plain(value))
        return self

    def in_(self, column, values):
        allowed = [_plain(v) for v in values]
        self._filters.append(lambda row: _plain(row.get(column)) in allowed)
        return self

    def is_(self, column, value):
        expected = None if value in (None, "null") else value
        self._filters.append(lambda row: row.get(column) is expected)
        return self

    def gte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def lte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) <= value)
        return self

    # Modifiers

    def order(self, column, desc: bool = False, **kwargs):
        self._orders.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def single(self):
        self._is_single = True
        return self

    # Execution

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        self._client.check_failure(self._table, self._operation)

        if self._operation == "insert":
            rows = self._client.insert_rows(self._table, self._payload)
            return MockSupabaseResponse(data=rows, count=len(rows))

        table = self._client.tables[self._table]

        if self._operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=updated, count=len(updated))

        if self._operation == "delete":
            removed = [row for row in table if self._matches(row)]
            self._client.tables[self._table] = [row for row in table if not self._matches(row)]
            return MockSupabaseResponse(data=removed, count=len(removed))

        rows = [copy.deepcopy(row) for row in table if self._matches(row)]
        for column, desc in reversed(self._orders):
            rows.sort(key=lambda row: _sort_key(row.get(column)), reverse=desc)

        total = len(rows)
        if self._range is not None:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]

        count = total if self._count else None

        if self._is_single:
            return MockSupabaseResponse(data=rows[0] if rows else None, count=count)
        return MockSupabaseResponse(data=rows, count=count)


class MockSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.constraints: dict[str, list[UniqueConstraint]] = defaultdict(list)
        self.failures: dict[tuple[str, str], Exception] = {}
        self._tick = 0

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)

    def add_unique(self, table: str, name: str, columns: tuple, where=None) -> None:
        self.constraints[table].append(UniqueConstraint(name, columns, where))

    def fail(self, table: str, operation: str, error: Optional[Exception] = None) -> None:
        """Make every `operation` on `table` raise."""
        self.failures[(table, operation)] = error or Exception("connection reset by peer")

    def check_failure(self, table: str, operation: str) -> None:
        error = self.failures.get((table, operation))
        if error is not None:
            raise error

    def seed(self, table: str, *rows: dict) -> list[dict]:
        """Insert rows directly (constraints still apply)."""
        return self.insert_rows(table, list(rows))

    def rows(self, table: str) -> list[dict]:
        return copy.deepcopy(self.tables[table])

    def find(self, table: str, row_id: str) -> Optional[dict]:
        for row in self.tables[table]:
            if row.get("id") == row_id:
                return copy.deepcopy(row)
        return None

    def _now(self) -> str:
        self._tick += 1
        return (CLOCK_START + timedelta(seconds=self._tick)).isoformat()

    def insert_rows(self, table: str, data) -> list[dict]:
        rows = [data] if isinstance(data, dict) else list(data)
        prepared = []
        for row in rows:
            row = copy.deepcopy(row)
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", self._now())
            row.setdefault("updated_at", None)
            prepared.append(row)

        existing = self.tables[table]
        for constraint in self.constraints[table]:
            seen = {constraint.key(row) for row in existing if constraint.applies(row)}
            for row in prepared:
                if not constraint.applies(row):
                    continue
                key = constraint.key(row)
                if key in seen:
                    raise APIError({
                        "code": "23505",
                        "message": f'duplicate key value violates unique constraint "{constraint.name}"',
                        "details": f"Key {constraint.columns}={key} already exists.",
                        "hint": None,
                    })
                seen.add(key)

        existing.extend(prepared)
        return copy.deepcopy(prepared)


def install_schema_constraints(client: MockSupabaseClient) -> None:
    """Unique indexes present in the production schema."""
    client.add_unique("invoices", "invoices_invoice_number_key", ("invoice_number",))
    client.add_unique(
        "invoices",
        "invoices_one_active_per_order",
        ("order_id",),
        where=lambda row: row.get("status") != "void",
    )
    client.add_unique(
        "sync_queue",
        "sync_queue_one_pending_per_entity_action",
        ("entity_type", "entity_id", "action"),
        where=lambda row: row.get("status") == "pending",
    )


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client with the schema's unique indexes.

    Usage:
        def test_something(mock_db):
            mock_db.seed("orders", OrderFactory.create())
    """
    client = MockSupabaseClient()
    install_schema_constraints(client)
    return client


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator:
    """Drop cached service singletons so each test wires fresh ones."""
    import importlib

    modules = [(importlib.import_module(name), attr) for name, attr in SINGLETONS]
    for module, attr in modules:
        setattr(module, attr, None)
    yield
    for module, attr in modules:
        setattr(module, attr, None)


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch every service's database client with the in-memory mock.

    Usage:
        def test_something(mock_db):
            mock_db.seed("orders", ...)
            # Any service constructed now reads and writes mock_db
    """
    with ExitStack() as stack:
        stack.enter_context(patch("config.database.get_supabase_client", return_value=mock_supabase))
        for module in SERVICE_MODULES:
            stack.enter_context(patch(f"{module}.get_supabase_client", return_value=mock_supabase))
        yield mock_supabase
