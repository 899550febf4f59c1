from types import SimpleNamespace
from typing import Any, AsyncGenerator, Callable

import pytest
from beanie import Document, PydanticObjectId
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

from rpm_core.core.config import settings
from rpm_core.main import app
from rpm_core.modules.alerts.models import Alert, AlertStatus
from rpm_core.modules.alerts.service import alert_stream
from rpm_core.modules.checkins.models import SymptomCheckin
from rpm_core.modules.enrollments.models import Enrollment
from rpm_core.modules.interactions.models import InteractionLog
from rpm_core.modules.measurements.models import Measurement
from rpm_core.modules.time_entries.models import TimeEntry

COLLECTIONS: dict[type[Document], str] = {
    Measurement: "measurements",
    InteractionLog: "interactions",
    Alert: "alerts",
    SymptomCheckin: "checkins",
    TimeEntry: "time_entries",
    Enrollment: "enrollments",
}


class _FieldProxy:
    """Minimal stand-in for Beanie field proxies used in query expressions."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("eq", self.name, other)

    def __ne__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("ne", self.name, other)

    def __ge__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("ge", self.name, other)

    def __le__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("le", self.name, other)

    def __gt__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("gt", self.name, other)

    def __lt__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("lt", self.name, other)

    __hash__ = object.__hash__


def _install_field_proxies() -> None:
    # Documents are never passed through init_beanie, so class-level field access
    # and the collection lookup in Document.__init__ need stand-ins
    dummy_settings = SimpleNamespace(
        pymongo_collection=None, motor_collection=None, use_state_management=False
    )
    for model in COLLECTIONS:
        for name in model.model_fields:
            if name == "revision_id":
                continue
            setattr(model, name, _FieldProxy(name))
        if getattr(model, "_document_settings", None) is None:
            model._document_settings = dummy_settings  # type: ignore[attr-defined]


_install_field_proxies()


def _extract_filters(expr: object) -> list[tuple[str, str, object]]:
    if isinstance(expr, tuple) and len(expr) == 3:
        op, field, value = expr
        if op in {"eq", "ne", "ge", "le", "gt", "lt", "in"}:
            return [(op, field, value)]
    return []


def _filters_from_exprs(exprs: tuple[object, ...]) -> list[tuple[str, str, object]]:
    filters: list[tuple[str, str, object]] = []
    for expr in exprs:
        filters.extend(_extract_filters(expr))
    return filters


def _matches(doc: Document, filters: list[tuple[str, str, object]]) -> bool:
    for op, field, value in filters:
        attr = getattr(doc, field, None)
        if op == "eq":
            if attr != value:
                return False
            continue
        if op == "ne":
            if attr == value:
                return False
            continue
        if op == "in":
            if attr not in list(value):  # type: ignore[arg-type]
                return False
            continue
        if attr is None:
            return False
        if op == "ge" and not (attr >= value):
            return False
        if op == "le" and not (attr <= value):
            return False
        if op == "gt" and not (attr > value):
            return False
        if op == "lt" and not (attr < value):
            return False
    return True


def _unique_violation(doc: Document, existing: list[Document]) -> bool:
    """Mirror the unique (partial) indexes declared on the documents."""
    others = [d for d in existing if d is not doc and str(d.id) != str(doc.id)]
    if isinstance(doc, Measurement):
        for other in others:
            if doc.external_id and (other.source, other.external_id) == (
                doc.source,
                doc.external_id,
            ):
                return True
            if doc.dedup_key and other.dedup_key == doc.dedup_key:
                return True
    if isinstance(doc, Alert) and doc.status == AlertStatus.OPEN:
        for other in others:
            if (
                other.status == AlertStatus.OPEN
                and other.patient_id == doc.patient_id
                and other.rule_id == doc.rule_id
            ):
                return True
    return False


class _FakeQuery:
    def __init__(
        self, rows: Callable[[], list[Document]], filters: list[tuple[str, str, object]]
    ) -> None:
        self._rows = rows
        self.filters = filters
        self._sort_field: str | None = None
        self._descending = False
        self._skip = 0
        self._limit: int | None = None

    def find(self, *exprs: object) -> "_FakeQuery":
        query = _FakeQuery(self._rows, [*self.filters, *_filters_from_exprs(exprs)])
        query._sort_field, query._descending = self._sort_field, self._descending
        query._skip, query._limit = self._skip, self._limit
        return query

    def sort(self, sort_spec: str) -> "_FakeQuery":
        self._descending = sort_spec.startswith("-")
        self._sort_field = sort_spec.lstrip("-+")
        return self

    def skip(self, count: int) -> "_FakeQuery":
        self._skip = count
        return self

    def limit(self, count: int) -> "_FakeQuery":
        self._limit = count
        return self

    async def to_list(self) -> list[Document]:
        items = [d for d in self._rows() if _matches(d, self.filters)]
        if self._sort_field:
            items.sort(key=lambda d: getattr(d, self._sort_field), reverse=self._descending)
        if self._skip:
            items = items[self._skip :]
        if self._limit is not None:
            items = items[: self._limit]
        return items

    async def first_or_none(self) -> Document | None:
        items = await self.limit(1).to_list()
        return items[0] if items else None

    async def count(self) -> int:
        return len([d for d in self._rows() if _matches(d, self.filters)])


class _FakeFindOne:
    """Awaitable like Beanie's FindOne, with a conditional `$set` update."""

    def __init__(self, query: _FakeQuery) -> None:
        self._query = query

    def __await__(self):
        return self._query.first_or_none().__await__()

    async def update(self, *operators: Any, **kwargs: Any) -> Document | None:
        doc = await self._query.first_or_none()
        if doc is None:
            return None
        for operator in operators:
            for field, value in operator.query["$set"].items():
                setattr(doc, getattr(field, "name", str(field)), value)
        return doc


def _patch_document(
    monkeypatch: pytest.MonkeyPatch, model: type[Document], store: dict[str, Any], key: str
) -> None:
    def _rows() -> list[Document]:
        return store[key]

    def _ensure_id(doc: Document) -> None:
        if getattr(doc, "id", None) is None:
            doc.id = PydanticObjectId()

    async def _insert(self: Document, session: object = None, **kwargs: Any) -> Document:
        if _unique_violation(self, store[key]):
            raise DuplicateKeyError("E11000 duplicate key error", 11000)
        _ensure_id(self)
        store[key].append(self)
        return self

    async def _save(self: Document, session: object = None, **kwargs: Any) -> Document:
        _ensure_id(self)
        if _unique_violation(self, store[key]):
            raise DuplicateKeyError("E11000 duplicate key error", 11000)
        if not any(d is self for d in store[key]):
            store[key] = [d for d in store[key] if str(d.id) != str(self.id)]
            store[key].append(self)
        return self

    async def _delete(self: Document, session: object = None, **kwargs: Any) -> None:
        store[key] = [d for d in store[key] if str(d.id) != str(self.id)]

    async def _get(doc_id: object, **kwargs: Any) -> Document | None:
        for doc in store[key]:
            if str(doc.id) == str(doc_id):
                return doc
        return None

    def _find(*exprs: object, **kwargs: Any) -> _FakeQuery:
        return _FakeQuery(_rows, _filters_from_exprs(exprs))

    def _find_one(*exprs: object, **kwargs: Any) -> _FakeFindOne:
        return _FakeFindOne(_find(*exprs))

    monkeypatch.setattr(model, "insert", _insert, raising=False)
    monkeypatch.setattr(model, "save", _save, raising=False)
    monkeypatch.setattr(model, "delete", _delete, raising=False)
    monkeypatch.setattr(model, "get", staticmethod(_get), raising=False)
    monkeypatch.setattr(model, "find", staticmethod(_find), raising=False)
    monkeypatch.setattr(model, "find_one", staticmethod(_find_one), raising=False)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[dict[str, Any], None]:
    """
    Provide an in-memory stand-in for Mongo to keep tests hermetic without a running DB.
    """
    settings.MONGODB_DB_NAME = "test_rpm_core_db"
    settings.MONGODB_TRANSACTIONS = False
    store: dict[str, Any] = {key: [] for key in COLLECTIONS.values()}

    for model, key in COLLECTIONS.items():
        _patch_document(monkeypatch, model, store, key)

    def _fake_in(field: object, values: list[object]) -> tuple[str, str, list[object]]:
        name = getattr(field, "name", str(field))
        return ("in", name, list(values))

    monkeypatch.setattr("rpm_core.modules.alerts.service.In", _fake_in, raising=False)

    # Stub init_db to avoid real connection attempts if invoked elsewhere
    async def _close() -> None:
        return None

    async def _init_db_stub() -> object:
        return SimpleNamespace(close=_close)

    monkeypatch.setattr("rpm_core.main.init_db", _init_db_stub, raising=False)

    yield store

    for rows in store.values():
        rows.clear()


@pytest.fixture
async def client(db: dict[str, Any]) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def enroll(db: dict[str, Any]) -> Callable[..., Any]:
    """Create an active enrollment; billing and time-entry rules read it."""

    async def _enroll(
        patient_id: str = "patient-1",
        clinician_id: str = "clinician-1",
        clinic_id: str = "clinic-1",
        **kwargs: Any,
    ) -> Enrollment:
        enrollment = Enrollment(
            patient_id=patient_id, clinician_id=clinician_id, clinic_id=clinic_id, **kwargs
        )
        await enrollment.insert()
        return enrollment

    return _enroll


@pytest.fixture(autouse=True)
def reset_alert_stream() -> None:
    """Ensure SSE subscriber registries start empty for each test."""
    alert_stream._queues.clear()
    yield
    alert_stream._queues.clear()
