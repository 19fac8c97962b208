"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides an in-memory stand-in for the
Supabase query builder so no test needs network access or credentials.
"""

import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.lead import Lead  # noqa: E402
from domain.pipeline import StageId, SYSTEM_SELLER_NAME, UNASSIGNED  # noqa: E402
from domain.user import User, UserRole  # noqa: E402
from repositories.lead_repository import LeadRepository  # noqa: E402
from repositories.user_repository import UserRepository  # noqa: E402


def _comparable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass
class FakeResponse:
    data: Optional[List[Dict[str, Any]]]
    error: Optional[str] = None
    count: Optional[int] = None


class FakeQuery:
    """Subset of the PostgREST builder used by the repositories."""

    def __init__(self, store: "FakeSupabase", table: str) -> None:
        self._store = store
        self._table = table
        self._action = "select"
        self._payload: Any = None
        self._count: Optional[str] = None
        self._filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[tuple] = None
        self._range: Optional[tuple] = None
        self._limit: Optional[int] = None
        self._error: Optional[str] = None

    # actions
    def select(self, columns: str = "*", count: Optional[str] = None) -> "FakeQuery":
        self._action = "select"
        self._count = count
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self._action = "insert"
        self._payload = payload
        return self

    def update(self, payload: Dict[str, Any]) -> "FakeQuery":
        self._action = "update"
        self._payload = payload
        return self

    # filters
    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: _comparable(row.get(column)) == _comparable(value))
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: _comparable(row.get(column)) != _comparable(value))
        return self

    def in_(self, column: str, values: List[Any]) -> "FakeQuery":
        values = list(values)
        self._store.in_query_sizes.append(len(values))
        if len(values) > self._store.max_in_values:
            self._error = f"in filter too large: {len(values)}"
        wanted = {_comparable(v) for v in values}
        self._filters.append(lambda row: _comparable(row.get(column)) in wanted)
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        if value == "null":
            self._filters.append(lambda row: row.get(column) is None)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self._range = (start, end)
        return self

    def limit(self, size: int) -> "FakeQuery":
        self._limit = size
        return self

    def execute(self) -> FakeResponse:
        with self._store.lock:
            if self._error:
                return FakeResponse(data=None, error=self._error)
            return getattr(self, f"_execute_{self._action}")()

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self._store.rows(self._table) if all(f(row) for f in self._filters)]

    def _execute_select(self) -> FakeResponse:
        rows = self._matching()
        total = len(rows)
        if self._order is not None:
            column, desc = self._order
            rows = sorted(rows, key=lambda r: (r.get(column) is None, str(r.get(column))), reverse=desc)
        if self._range is not None:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]
        return FakeResponse(data=[dict(r) for r in rows], count=total if self._count else None)

    def _write_rows(self) -> List[Dict[str, Any]]:
        rows = self._payload if isinstance(self._payload, list) else [self._payload]
        return [dict(r) for r in rows]

    def _check_write(self, row_count: int) -> Optional[FakeResponse]:
        error = self._store.next_write_error(self._table, row_count)
        if error:
            return FakeResponse(data=None, error=error)
        return None

    def _execute_insert(self) -> FakeResponse:
        rows = self._write_rows()
        failed = self._check_write(len(rows))
        if failed:
            return failed
        self._store.rows(self._table).extend(rows)
        return FakeResponse(data=[dict(r) for r in rows])

    def _execute_update(self) -> FakeResponse:
        failed = self._check_write(1)
        if failed:
            return failed
        updated = []
        for row in self._matching():
            row.update(self._payload)
            updated.append(dict(row))
        return FakeResponse(data=updated)


class FakeSupabase:
    """
    In-memory Supabase client.

    Every execute() runs under one lock, so a filtered update is applied
    atomically like a single conditional UPDATE on the real store.
    """

    def __init__(self, max_in_values: int = 30, max_write_rows: int = 500) -> None:
        self.lock = threading.Lock()
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.max_in_values = max_in_values
        self.max_write_rows = max_write_rows
        self.in_query_sizes: List[int] = []
        self.write_calls: Dict[str, int] = {}
        self._failing_writes: Dict[str, set] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def fail_write(self, table: str, call_number: int) -> None:
        """Make the Nth write request (1-based, counted from now) against `table` fail."""
        target = self.write_calls.get(table, 0) + call_number
        self._failing_writes.setdefault(table, set()).add(target)

    def next_write_error(self, table: str, row_count: int) -> Optional[str]:
        self.write_calls[table] = self.write_calls.get(table, 0) + 1
        if self.write_calls[table] in self._failing_writes.get(table, set()):
            return "injected write failure"
        if row_count > self.max_write_rows:
            return f"too many operations in one request: {row_count}"
        return None


NOW = datetime(2026, 10, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def user_repo(fake_supabase: FakeSupabase) -> UserRepository:
    return UserRepository(fake_supabase)


@pytest.fixture
def lead_repo(fake_supabase: FakeSupabase) -> LeadRepository:
    return LeadRepository(fake_supabase)


@pytest.fixture
def make_user(user_repo: UserRepository) -> Callable[..., User]:
    """Create and store a user; keyword arguments override the defaults."""

    def _make(uid: str, **overrides: Any) -> User:
        fields: Dict[str, Any] = {
            "uid": uid,
            "display_name": uid.replace("-", " ").title(),
            "role": UserRole.SELLER,
            "created_at": NOW,
        }
        fields.update(overrides)
        user = User(**fields)
        user_repo.insert_user(user)
        return user

    return _make


@pytest.fixture
def make_lead(lead_repo: LeadRepository) -> Callable[..., Lead]:
    """Create and store a lead; unassigned in para-atribuir unless overridden."""

    def _make(**overrides: Any) -> Lead:
        fields: Dict[str, Any] = {
            "lead_id": uuid4(),
            "name": "Cliente",
            "user_id": UNASSIGNED,
            "seller_name": SYSTEM_SELLER_NAME,
            "stage_id": StageId.PARA_ATRIBUIR,
            "created_at": NOW,
            "last_contact": NOW,
            "value": Decimal("1093.113"),
            "value_after_discount": Decimal("1000"),
            "kwh": Decimal("1000"),
        }
        fields.update(overrides)
        lead = Lead(**fields)
        lead_repo.insert_lead(lead)
        return lead

    return _make
