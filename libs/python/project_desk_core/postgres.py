"""psycopg-backed implementation of :mod:`project_desk_core.store`."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from project_desk_schemas import (
    AnonymousOwner,
    AuthenticatedOwner,
    Payment,
    Project,
    SwitchRequestStatus,
    TopicSwitchRequest,
    owner_from_ids,
)

from .errors import PersistenceError, ProjectAlreadyLocked, RequestAlreadyPending
from .store import OwnerRef, ProjectStore, StoreSession

logger = logging.getLogger(__name__)

LOCKED_USER_INDEX = "uq_projects_locked_user"
LOCKED_ANONYMOUS_INDEX = "uq_projects_locked_anonymous"
PENDING_SWITCH_INDEX = "uq_topic_switch_pending"

SCHEMA_DDL = f"""
CREATE TABLE IF NOT EXISTS app_users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'member',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS user_sessions (
    id UUID PRIMARY KEY,
    user_id TEXT REFERENCES app_users(id) ON DELETE CASCADE,
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    ip_address TEXT,
    user_agent TEXT
);

CREATE INDEX IF NOT EXISTS idx_user_sessions_user_id ON user_sessions(user_id);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    user_id TEXT REFERENCES app_users(id) ON DELETE SET NULL,
    anonymous_id TEXT,
    topic TEXT NOT NULL DEFAULT '',
    twist TEXT NOT NULL DEFAULT '',
    abstract TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'OUTLINE_GENERATED',
    is_locked BOOLEAN NOT NULL DEFAULT FALSE,
    locked_at TIMESTAMPTZ,
    is_unlocked BOOLEAN NOT NULL DEFAULT FALSE,
    mode TEXT CHECK (mode IN ('DIY', 'CONCIERGE')),
    progress_percentage INTEGER NOT NULL DEFAULT 0 CHECK (progress_percentage BETWEEN 0 AND 100),
    content_progress JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    document_progress JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    ai_generation_status JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    time_tracking JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    milestones JSONB NOT NULL DEFAULT '[]'::jsonb,
    estimated_completion TIMESTAMPTZ,
    actual_completion TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (user_id IS NOT NULL OR anonymous_id IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_projects_user_id ON projects(user_id);
CREATE INDEX IF NOT EXISTS idx_projects_anonymous_id ON projects(anonymous_id);

CREATE UNIQUE INDEX IF NOT EXISTS {LOCKED_USER_INDEX}
    ON projects(user_id) WHERE is_locked AND user_id IS NOT NULL;
CREATE UNIQUE INDEX IF NOT EXISTS {LOCKED_ANONYMOUS_INDEX}
    ON projects(anonymous_id) WHERE is_locked AND user_id IS NULL;

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    reference TEXT NOT NULL,
    amount NUMERIC(14, 2) NOT NULL CHECK (amount >= 0),
    currency TEXT NOT NULL,
    status TEXT NOT NULL,
    gateway_response JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    user_id TEXT NOT NULL REFERENCES app_users(id),
    project_id TEXT NOT NULL REFERENCES projects(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT uq_payments_reference UNIQUE (reference)
);

CREATE INDEX IF NOT EXISTS idx_payments_user_id ON payments(user_id);

CREATE TABLE IF NOT EXISTS topic_switch_requests (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES app_users(id),
    reason TEXT NOT NULL,
    explanation TEXT,
    proof_url TEXT,
    fee NUMERIC(14, 2),
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'denied')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    resolved_at TIMESTAMPTZ,
    resolved_by TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS {PENDING_SWITCH_INDEX}
    ON topic_switch_requests(project_id) WHERE status = 'pending';
"""

_PROJECT_COLUMNS = """
    id, user_id, anonymous_id, topic, twist, abstract, status, is_locked, locked_at,
    is_unlocked, mode, progress_percentage, content_progress, document_progress,
    ai_generation_status, time_tracking, milestones, estimated_completion,
    actual_completion, created_at, updated_at
"""

_PAYMENT_COLUMNS = "id, reference, amount, currency, status, gateway_response, user_id, project_id, created_at"

_SWITCH_COLUMNS = """
    id, project_id, user_id, reason, explanation, proof_url, fee, status,
    created_at, resolved_at, resolved_by
"""


def _row_to_project(row: dict[str, Any]) -> Project:
    return Project(
        id=row["id"],
        owner=owner_from_ids(row.get("user_id"), row.get("anonymous_id")),
        topic=row.get("topic") or "",
        twist=row.get("twist") or "",
        abstract=row.get("abstract") or "",
        status=row["status"],
        is_locked=bool(row.get("is_locked")),
        locked_at=row.get("locked_at"),
        is_unlocked=bool(row.get("is_unlocked")),
        mode=row.get("mode"),
        progress_percentage=int(row.get("progress_percentage") or 0),
        content_progress=row.get("content_progress") or {},
        document_progress=row.get("document_progress") or {},
        ai_generation_status=row.get("ai_generation_status") or {},
        time_tracking=row.get("time_tracking") or {},
        milestones=row.get("milestones") or [],
        estimated_completion=row.get("estimated_completion"),
        actual_completion=row.get("actual_completion"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_payment(row: dict[str, Any]) -> Payment:
    return Payment(**row)


def _row_to_switch_request(row: dict[str, Any]) -> TopicSwitchRequest:
    return TopicSwitchRequest(**row)


def _owner_clause(owner: OwnerRef) -> tuple[str, tuple[Any, ...]]:
    if isinstance(owner, AuthenticatedOwner):
        return "user_id = %s", (owner.user_id,)
    return "user_id IS NULL AND anonymous_id = %s", (owner.anonymous_id,)


class PostgresSession(StoreSession):
    """Session over one pooled connection inside an open transaction."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self) -> psycopg.Cursor:
        return self._conn.cursor(row_factory=dict_row)

    # Projects

    def get_project(self, project_id: str, *, for_update: bool = False) -> Optional[Project]:
        query = f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (project_id,))
            row = cur.fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self, owners: list[OwnerRef]) -> list[Project]:
        if not owners:
            return []
        clauses: list[str] = []
        params: list[Any] = []
        for owner in owners:
            clause, values = _owner_clause(owner)
            clauses.append(f"({clause})")
            params.extend(values)
        query = (
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE "
            + " OR ".join(clauses)
            + " ORDER BY updated_at DESC"
        )
        with self._cursor() as cur:
            cur.execute(query, tuple(params))
            rows = cur.fetchall()
        return [_row_to_project(row) for row in rows]

    def find_locked_project(self, owner: OwnerRef) -> Optional[Project]:
        clause, params = _owner_clause(owner)
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE {clause} AND is_locked LIMIT 1",
                params,
            )
            row = cur.fetchone()
        return _row_to_project(row) if row else None

    def insert_project(self, project: Project) -> Project:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO projects (
                    id, user_id, anonymous_id, topic, twist, abstract, status, mode,
                    estimated_completion, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_PROJECT_COLUMNS}
                """,
                (
                    project.id,
                    project.user_id,
                    project.anonymous_id,
                    project.topic,
                    project.twist,
                    project.abstract,
                    project.status.value,
                    project.mode.value if project.mode else None,
                    project.estimated_completion,
                    project.created_at,
                    project.updated_at,
                ),
            )
            row = cur.fetchone()
        return _row_to_project(row)

    def save_project(self, project: Project) -> Project:
        params = (
            project.user_id,
            project.anonymous_id,
            project.topic,
            project.twist,
            project.abstract,
            project.status.value,
            project.is_locked,
            project.locked_at,
            project.is_unlocked,
            project.mode.value if project.mode else None,
            project.progress_percentage,
            Jsonb(project.content_progress),
            Jsonb(project.document_progress),
            Jsonb(project.ai_generation_status),
            Jsonb(project.time_tracking),
            Jsonb(project.milestones),
            project.estimated_completion,
            project.actual_completion,
            project.id,
        )
        query = f"""
            UPDATE projects
            SET user_id = %s,
                anonymous_id = %s,
                topic = %s,
                twist = %s,
                abstract = %s,
                status = %s,
                is_locked = %s,
                locked_at = %s,
                is_unlocked = %s,
                mode = %s,
                progress_percentage = %s,
                content_progress = %s,
                document_progress = %s,
                ai_generation_status = %s,
                time_tracking = %s,
                milestones = %s,
                estimated_completion = %s,
                actual_completion = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {_PROJECT_COLUMNS}
        """
        row = self._execute_guarding_lock(project, query, params)
        return _row_to_project(row)

    def set_lock(self, project_id: str, locked: bool, locked_at: Optional[datetime]) -> Project:
        current = self.get_project(project_id)
        if current is None:
            raise PersistenceError("Project disappeared while changing its lock", project_id=project_id)
        query = f"""
            UPDATE projects
            SET is_locked = %s, locked_at = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_PROJECT_COLUMNS}
        """
        row = self._execute_guarding_lock(current, query, (locked, locked_at, project_id))
        return _row_to_project(row)

    def _execute_guarding_lock(self, project: Project, query: str, params: tuple[Any, ...]) -> dict[str, Any]:
        # The savepoint keeps the surrounding transaction usable after a violation.
        try:
            with self._conn.transaction(), self._cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None)
            if constraint not in {LOCKED_USER_INDEX, LOCKED_ANONYMOUS_INDEX}:
                raise
            existing = self.find_locked_project(project.owner)
            raise ProjectAlreadyLocked(
                existing.id if existing else "unknown",
                project_id=project.id,
            ) from exc
        if row is None:
            raise PersistenceError("Project row not found during update", project_id=project.id)
        return row

    # Payments

    def get_payment_by_reference(self, reference: str) -> Optional[Payment]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE reference = %s", (reference,))
            row = cur.fetchone()
        return _row_to_payment(row) if row else None

    def insert_payment(self, payment: Payment) -> Optional[Payment]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO payments (id, reference, amount, currency, status, gateway_response,
                                      user_id, project_id, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (reference) DO NOTHING
                RETURNING {_PAYMENT_COLUMNS}
                """,
                (
                    payment.id,
                    payment.reference,
                    payment.amount,
                    payment.currency,
                    payment.status.value,
                    Jsonb(payment.gateway_response),
                    payment.user_id,
                    payment.project_id,
                    payment.created_at,
                ),
            )
            row = cur.fetchone()
        return _row_to_payment(row) if row else None

    def list_payments(self, user_id: str) -> list[Payment]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE user_id = %s ORDER BY created_at DESC",
                (user_id,),
            )
            rows = cur.fetchall()
        return [_row_to_payment(row) for row in rows]

    # Users

    def find_user_id_by_email(self, email: str) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute("SELECT id FROM app_users WHERE email = %s", (email.strip().lower(),))
            row = cur.fetchone()
        return row["id"] if row else None

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute("SELECT id, email, name FROM app_users WHERE id = %s", (user_id,))
            return cur.fetchone()

    # Topic switch requests

    def insert_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        try:
            with self._conn.transaction(), self._cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO topic_switch_requests (
                        id, project_id, user_id, reason, explanation, proof_url, fee, status, created_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_SWITCH_COLUMNS}
                    """,
                    (
                        request.id,
                        request.project_id,
                        request.user_id,
                        request.reason,
                        request.explanation,
                        request.proof_url,
                        request.fee,
                        request.status.value,
                        request.created_at,
                    ),
                )
                row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            if getattr(exc.diag, "constraint_name", None) != PENDING_SWITCH_INDEX:
                raise
            raise RequestAlreadyPending(request.project_id) from exc
        return _row_to_switch_request(row)

    def get_switch_request(self, request_id: str, *, for_update: bool = False) -> Optional[TopicSwitchRequest]:
        query = f"SELECT {_SWITCH_COLUMNS} FROM topic_switch_requests WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (request_id,))
            row = cur.fetchone()
        return _row_to_switch_request(row) if row else None

    def find_pending_switch_request(self, project_id: str) -> Optional[TopicSwitchRequest]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_SWITCH_COLUMNS} FROM topic_switch_requests WHERE project_id = %s AND status = 'pending'",
                (project_id,),
            )
            row = cur.fetchone()
        return _row_to_switch_request(row) if row else None

    def save_switch_request(self, request: TopicSwitchRequest) -> TopicSwitchRequest:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE topic_switch_requests
                SET status = %s, resolved_at = %s, resolved_by = %s
                WHERE id = %s
                RETURNING {_SWITCH_COLUMNS}
                """,
                (request.status.value, request.resolved_at, request.resolved_by, request.id),
            )
            row = cur.fetchone()
        if row is None:
            raise PersistenceError("Switch request row not found during update", request_id=request.id)
        return _row_to_switch_request(row)

    def list_switch_requests(self, status: Optional[SwitchRequestStatus] = None) -> list[TopicSwitchRequest]:
        query = f"SELECT {_SWITCH_COLUMNS} FROM topic_switch_requests"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = %s"
            params = (status.value,)
        query += " ORDER BY created_at DESC"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [_row_to_switch_request(row) for row in rows]


class PostgresStore(ProjectStore):
    """Transactional store over a shared :class:`ConnectionPool`."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        try:
            with self._pool.connection() as conn, conn.transaction():
                yield PostgresSession(conn)
        except psycopg.errors.IntegrityError:
            raise
        except psycopg.Error as exc:
            logger.exception("Storage transaction failed")
            raise PersistenceError("Storage unavailable, retry the request") from exc

    def initialise_schema(self) -> None:
        """Create tables, partial unique indexes and constraints if missing."""

        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(SCHEMA_DDL)
            conn.commit()
        logger.info("Database schema ensured")
