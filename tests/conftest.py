"""Shared fixtures: in-memory Supabase and CRM doubles, manual clock and timers."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

from salesister.core.exceptions import CRMSyncError
from salesister.core.resilience import get_all_circuit_breakers


@dataclass
class FakeResponse:
    data: list[dict[str, Any]]


class FakeQuery:
    """Chainable subset of the supabase-py query builder."""

    def __init__(self, db: FakeSupabase, table: str) -> None:
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list[Callable[[dict[str, Any]], bool]] = []
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None

    def select(self, *_columns: str) -> FakeQuery:
        self._op = "select"
        return self

    def insert(self, payload: dict[str, Any] | list[dict[str, Any]]) -> FakeQuery:
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> FakeQuery:
        self._op = "update"
        self._payload = payload
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> FakeQuery:
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column: str, value: Any) -> FakeQuery:
        self._filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> FakeQuery:
        self._limit = count
        return self

    def execute(self) -> FakeResponse:
        self._db.calls.append((self._table, self._op))
        if self._table in self._db.failing_tables:
            raise RuntimeError(f"connection lost while querying {self._table}")
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [copy.deepcopy(r) for r in new_rows]
            rows.extend(inserted)
            return FakeResponse(copy.deepcopy(inserted))

        matched = [r for r in rows if all(f(r) for f in self._filters)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return FakeResponse(copy.deepcopy(matched))

        if self._order is not None:
            column, desc = self._order
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResponse(copy.deepcopy(matched))


@dataclass
class FakeSupabase:
    """In-memory tables behind ``client.table(...)``."""

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    failing_tables: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(name, [])


class ManualClock:
    """Monotonic millisecond clock moved by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class _ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """TimerScheduler whose timers fire only when the clock is advanced."""

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._timers: list[_ManualTimer] = []

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._clock.now + delay_ms, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, ms: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._clock.now + ms
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            timer.cancelled = True
            self._clock.now = max(self._clock.now, timer.due)
            timer.callback()
        self._clock.now = target


@pytest.fixture
def fake_db() -> FakeSupabase:
    """Empty in-memory Supabase double."""
    return FakeSupabase()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 2, 15, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_circuit_breakers() -> Iterator[None]:
    """Every test starts with closed circuits."""
    for breaker in get_all_circuit_breakers().values():
        breaker.reset()
    yield
    for breaker in get_all_circuit_breakers().values():
        breaker.reset()


class FakeCrm:
    """In-memory CrmClient that records every write.

    ``fail_when(object_type, properties)`` returning True makes that create
    raise, so tests can fail individual entities.
    """

    def __init__(self) -> None:
        self.contacts: dict[str, dict[str, str]] = {}
        self.created: list[tuple[str, dict[str, str], list[Any]]] = []
        self.updates: list[tuple[str, dict[str, str]]] = []
        self.fail_when: Callable[[str, dict[str, str]], bool] = lambda _t, _p: False
        self._next_id = 100

    async def create_object(
        self,
        object_type: str,
        properties: dict[str, str],
        associations: Any = (),
    ) -> str:
        if self.fail_when(object_type, properties):
            raise CRMSyncError(f"{object_type} rejected", provider="hubspot", status_code=500)
        self._next_id += 1
        object_id = str(self._next_id)
        self.created.append((object_type, dict(properties), list(associations)))
        if object_type == "contacts":
            self.contacts[object_id] = dict(properties)
        return object_id

    async def find_contact_by_email(self, email: str) -> dict[str, Any] | None:
        for contact_id, properties in self.contacts.items():
            if properties.get("email") == email:
                return {"id": contact_id, "properties": dict(properties)}
        return None

    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None:
        self.updates.append((contact_id, dict(properties)))
        self.contacts[contact_id].update(properties)

    def created_of(self, object_type: str) -> list[dict[str, str]]:
        return [props for kind, props, _assoc in self.created if kind == object_type]


@pytest.fixture
def fake_crm() -> FakeCrm:
    return FakeCrm()
