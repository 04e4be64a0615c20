"""Tests for the psycopg store's error mapping, run against a scripted connection."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Iterator

import psycopg
import pytest

from project_desk_core import PersistenceError, ProjectAlreadyLocked, RequestAlreadyPending
from project_desk_core.postgres import (
    LOCKED_ANONYMOUS_INDEX,
    LOCKED_USER_INDEX,
    PENDING_SWITCH_INDEX,
    SCHEMA_DDL,
    PostgresSession,
    PostgresStore,
)
from project_desk_schemas import Payment, Project, TopicSwitchRequest
from tests.utils.memory_store import anonymous_owner, user_owner

STAMP = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


class _UniqueViolation(psycopg.errors.UniqueViolation):
    """Unique violation carrying a fixed constraint name, as the server reports it."""

    def __init__(self, constraint: str) -> None:
        super().__init__(f'duplicate key value violates unique constraint "{constraint}"')
        self._constraint = constraint

    @property
    def diag(self):
        return SimpleNamespace(constraint_name=self._constraint)


class _FakeCursor:
    def __init__(self, conn: "_FakeConnection") -> None:
        self._conn = conn
        self._result: Any = None

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def execute(self, query: str, params: Any = None) -> None:
        self._conn.queries.append((query, params))
        result = self._conn.results.pop(0) if self._conn.results else None
        if isinstance(result, Exception):
            raise result
        self._result = result

    def fetchone(self) -> Any:
        return self._result

    def fetchall(self) -> Any:
        return self._result or []


class _FakeConnection:
    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.queries: list[tuple[str, Any]] = []
        self.savepoints = 0
        self.rollbacks = 0

    def cursor(self, row_factory=None) -> _FakeCursor:
        return _FakeCursor(self)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.savepoints += 1
        try:
            yield
        except Exception:
            self.rollbacks += 1
            raise


class _FakePool:
    def __init__(self, conn: _FakeConnection) -> None:
        self._conn = conn

    @contextmanager
    def connection(self) -> Iterator[_FakeConnection]:
        yield self._conn


def _project_row(project_id: str, owner, **fields: Any) -> dict[str, Any]:
    project = Project(id=project_id, owner=owner, created_at=STAMP, updated_at=STAMP, **fields)
    return {
        "id": project.id,
        "user_id": project.user_id,
        "anonymous_id": project.anonymous_id,
        "topic": project.topic,
        "status": project.status.value,
        "is_locked": project.is_locked,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def _project(project_id: str, owner, **fields: Any) -> Project:
    return Project(id=project_id, owner=owner, created_at=STAMP, updated_at=STAMP, **fields)


def _payment() -> Payment:
    return Payment(
        id="pay-1",
        reference="PSK_1",
        amount=Decimal("15000"),
        currency="NGN",
        user_id="user-1",
        project_id="proj-1",
        created_at=STAMP,
    )


def _switch_request() -> TopicSwitchRequest:
    return TopicSwitchRequest(id="req-2", project_id="proj-1", user_id="user-1", reason="New supervisor")


def test_save_project_maps_user_lock_violation() -> None:
    conn = _FakeConnection(
        _UniqueViolation(LOCKED_USER_INDEX),
        _project_row("held", user_owner("user-1"), is_locked=True),
    )
    session = PostgresSession(conn)

    with pytest.raises(ProjectAlreadyLocked) as excinfo:
        session.save_project(_project("second", user_owner("user-1"), is_locked=True))

    assert excinfo.value.locked_project_id == "held"
    assert excinfo.value.context["project_id"] == "second"
    assert conn.savepoints == 1 and conn.rollbacks == 1
    lookup, params = conn.queries[1]
    assert "is_locked" in lookup and params == ("user-1",)


def test_set_lock_maps_anonymous_lock_violation() -> None:
    draft = _project_row("draft", anonymous_owner("anon-1"))
    conn = _FakeConnection(
        draft,
        _UniqueViolation(LOCKED_ANONYMOUS_INDEX),
        _project_row("held", anonymous_owner("anon-1"), is_locked=True),
    )
    session = PostgresSession(conn)

    with pytest.raises(ProjectAlreadyLocked) as excinfo:
        session.set_lock("draft", True, STAMP)

    assert excinfo.value.locked_project_id == "held"
    assert conn.queries[2][1] == ("anon-1",)


def test_lock_violation_without_visible_holder() -> None:
    conn = _FakeConnection(_UniqueViolation(LOCKED_USER_INDEX), None)

    with pytest.raises(ProjectAlreadyLocked) as excinfo:
        PostgresSession(conn).save_project(_project("second", user_owner("user-1"), is_locked=True))

    assert excinfo.value.locked_project_id == "unknown"


def test_other_unique_violation_is_not_a_lock_conflict() -> None:
    conn = _FakeConnection(_UniqueViolation("projects_pkey"))

    with pytest.raises(psycopg.errors.UniqueViolation):
        PostgresSession(conn).save_project(_project("proj-1", user_owner("user-1")))

    assert len(conn.queries) == 1


def test_save_project_of_missing_row() -> None:
    conn = _FakeConnection(None)

    with pytest.raises(PersistenceError):
        PostgresSession(conn).save_project(_project("gone", user_owner("user-1")))


def test_save_project_returns_stored_row() -> None:
    conn = _FakeConnection(_project_row("proj-1", user_owner("user-1"), topic="Stored"))

    saved = PostgresSession(conn).save_project(_project("proj-1", user_owner("user-1"), topic="Stored"))

    assert saved.topic == "Stored"
    assert saved.user_id == "user-1"
    assert conn.rollbacks == 0


def test_pending_index_violation_maps_to_conflict() -> None:
    conn = _FakeConnection(_UniqueViolation(PENDING_SWITCH_INDEX))

    with pytest.raises(RequestAlreadyPending) as excinfo:
        PostgresSession(conn).insert_switch_request(_switch_request())

    assert excinfo.value.context["project_id"] == "proj-1"
    assert conn.savepoints == 1 and conn.rollbacks == 1


def test_switch_request_other_violation_propagates() -> None:
    conn = _FakeConnection(_UniqueViolation("topic_switch_requests_pkey"))

    with pytest.raises(psycopg.errors.UniqueViolation):
        PostgresSession(conn).insert_switch_request(_switch_request())


def test_duplicate_payment_reference_inserts_nothing() -> None:
    conn = _FakeConnection(None)

    assert PostgresSession(conn).insert_payment(_payment()) is None

    query, params = conn.queries[0]
    assert "ON CONFLICT (reference) DO NOTHING" in query
    assert params[1] == "PSK_1"


def test_inserted_payment_is_returned() -> None:
    stored = _payment().model_dump()
    stored["status"] = "SUCCESS"
    conn = _FakeConnection(stored)

    payment = PostgresSession(conn).insert_payment(_payment())

    assert payment is not None
    assert payment.reference == "PSK_1"
    assert payment.amount == Decimal("15000")


def test_transaction_wraps_driver_failures() -> None:
    store = PostgresStore(_FakePool(_FakeConnection()))

    with pytest.raises(PersistenceError) as excinfo:
        with store.transaction():
            raise psycopg.OperationalError("server closed the connection")

    assert excinfo.value.status_code == 503
    assert isinstance(excinfo.value.__cause__, psycopg.OperationalError)


def test_transaction_passes_integrity_errors_through() -> None:
    conn = _FakeConnection()
    store = PostgresStore(_FakePool(conn))

    with pytest.raises(psycopg.errors.UniqueViolation):
        with store.transaction():
            raise _UniqueViolation("payments_pkey")

    assert conn.rollbacks == 1


def test_transaction_passes_domain_errors_through() -> None:
    store = PostgresStore(_FakePool(_FakeConnection()))

    with pytest.raises(RequestAlreadyPending):
        with store.transaction():
            raise RequestAlreadyPending("proj-1")


def test_schema_declares_partial_unique_indexes() -> None:
    ddl = " ".join(SCHEMA_DDL.split())

    assert (
        f"CREATE UNIQUE INDEX IF NOT EXISTS {LOCKED_USER_INDEX} "
        "ON projects(user_id) WHERE is_locked AND user_id IS NOT NULL;"
    ) in ddl
    assert (
        f"CREATE UNIQUE INDEX IF NOT EXISTS {LOCKED_ANONYMOUS_INDEX} "
        "ON projects(anonymous_id) WHERE is_locked AND user_id IS NULL;"
    ) in ddl
    assert (
        f"CREATE UNIQUE INDEX IF NOT EXISTS {PENDING_SWITCH_INDEX} "
        "ON topic_switch_requests(project_id) WHERE status = 'pending';"
    ) in ddl
    assert "CONSTRAINT uq_payments_reference UNIQUE (reference)" in ddl
