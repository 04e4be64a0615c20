"""Project lifecycle, payments and support API for the Project Desk stack."""
from __future__ import annotations

import hashlib
import json
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Literal, Optional
from uuid import uuid4

import bcrypt
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from project_desk_core import (
    CHARGE_SUCCESS_EVENT,
    SIGNATURE_HEADER,
    BillingOrchestrator,
    CallerIdentity,
    GatewayConfig,
    LockManager,
    PaymentReceipt,
    PaymentReconciliationError,
    PaystackClient,
    ProgressTracker,
    ProjectDeskError,
    ProjectNotFound,
    ProjectService,
    ProjectStore,
    ReceiptNotifier,
    TopicSwitchWorkflow,
    ValidationFailure,
    Forbidden,
    load_gateway_config,
    load_mail_config,
    verify_signature,
)
from project_desk_core.postgres import PostgresStore
from project_desk_schemas import (
    Milestone,
    Payment,
    PaymentEvent,
    Phase,
    ProgressDetails,
    ProjectMode,
    ProjectStatus,
    Project,
    SwitchRequestStatus,
    TopicSwitchRequest,
    get_tier,
    utcnow,
)

from project_desk_observability import current_log_context, log_context, setup_fastapi_metrics, setup_logging


DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")

# psycopg connection URLs do not use SQLAlchemy's driver suffix.
PG_CONNINFO = DATABASE_URL.replace("+psycopg", "")

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("PROJECT_DESK_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Shared connection pool for lightweight data access.
POOL = ConnectionPool(PG_CONNINFO, min_size=1, max_size=10, open=True)
STORE = PostgresStore(POOL)

SERVICE_NAME = "api"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = os.getenv("PROJECT_DESK_SESSION_COOKIE_NAME", "project_desk_session")
ANONYMOUS_COOKIE_NAME = os.getenv("PROJECT_DESK_ANONYMOUS_COOKIE_NAME", "anonymous_id")
SESSION_TTL_MINUTES = int(os.getenv("PROJECT_DESK_SESSION_TTL_MINUTES", "720"))
SESSION_TTL = timedelta(minutes=max(SESSION_TTL_MINUTES, 1))
SESSION_COOKIE_SECURE = os.getenv("PROJECT_DESK_SESSION_COOKIE_SECURE", "0") == "1"
SESSION_COOKIE_SAMESITE = os.getenv("PROJECT_DESK_SESSION_COOKIE_SAMESITE", "lax")
SESSION_COOKIE_DOMAIN = os.getenv("PROJECT_DESK_SESSION_COOKIE_DOMAIN")

DEFAULT_ADMIN_EMAIL = os.getenv("PROJECT_DESK_ADMIN_EMAIL", "admin@local").strip().lower()
DEFAULT_ADMIN_PASSWORD = os.getenv("PROJECT_DESK_ADMIN_PASSWORD")

GLOBAL_ROLE_PRIORITY: dict[str, int] = {
    "member": 1,
    "admin": 10,
}

DEFAULT_CHECKOUT_TIER = "DIY_PAPER"


class SessionUser(BaseModel):
    id: str
    email: str
    role: str


class SessionResponse(BaseModel):
    user: SessionUser


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if "@" not in cleaned:
            raise ValueError("Email must contain @")
        return cleaned


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectCreateRequest(CamelModel):
    topic: str = Field(..., min_length=1, max_length=500)
    twist: str = Field("", max_length=2000)
    abstract: str = Field("", max_length=20000)

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Topic cannot be empty")
        return cleaned


class StatusUpdateRequest(CamelModel):
    status: ProjectStatus


class ModeUpdateRequest(CamelModel):
    mode: ProjectMode


class ProgressUpdateRequest(CamelModel):
    milestone: Milestone
    phase: Phase
    details: Optional[ProgressDetails] = None
    metadata: Optional[dict[str, Any]] = None


class CheckoutRequest(CamelModel):
    tier_id: str = DEFAULT_CHECKOUT_TIER


class CheckoutResponse(CamelModel):
    url: str
    reference: str
    tier_id: str
    amount: Decimal


class VerifyRequest(CamelModel):
    reference: str = Field(..., min_length=1)


class TopicSwitchCreateRequest(CamelModel):
    project_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=200)
    explanation: Optional[str] = Field(None, max_length=4000)
    proof_url: Optional[str] = Field(None, max_length=1000)
    fee: Optional[Decimal] = Field(None, ge=0)


class ReviewDecisionRequest(CamelModel):
    status: Literal["approved", "denied"]


class ProjectView(CamelModel):
    id: str
    user_id: Optional[str]
    anonymous_id: Optional[str]
    topic: str
    twist: str
    abstract: str
    status: ProjectStatus
    is_locked: bool
    locked_at: Optional[datetime]
    is_unlocked: bool
    mode: Optional[ProjectMode]
    progress_percentage: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProjectView":
        return cls(
            id=project.id,
            user_id=project.user_id,
            anonymous_id=project.anonymous_id,
            topic=project.topic,
            twist=project.twist,
            abstract=project.abstract,
            status=project.status,
            is_locked=project.is_locked,
            locked_at=project.locked_at,
            is_unlocked=project.is_unlocked,
            mode=project.mode,
            progress_percentage=project.progress_percentage,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


def _camel_payload(model: BaseModel) -> dict[str, Any]:
    return {to_camel(key): value for key, value in model.model_dump(mode="json").items()}


def _payment_payload(payment: Payment) -> dict[str, Any]:
    return _camel_payload(payment)


def _switch_payload(request: TopicSwitchRequest) -> dict[str, Any]:
    return _camel_payload(request)


def _project_payload(project: Project) -> dict[str, Any]:
    return ProjectView.from_project(project).model_dump(mode="json", by_alias=True)


@dataclass
class Services:
    store: ProjectStore
    projects: ProjectService
    progress: ProgressTracker
    billing: BillingOrchestrator
    switches: TopicSwitchWorkflow
    notifier: ReceiptNotifier


def build_services(store: ProjectStore) -> Services:
    locks = LockManager()
    return Services(
        store=store,
        projects=ProjectService(store, locks),
        progress=ProgressTracker(store),
        billing=BillingOrchestrator(store, locks),
        switches=TopicSwitchWorkflow(store, locks),
        notifier=ReceiptNotifier(load_mail_config()),
    )


SERVICES = build_services(STORE)


def get_services() -> Services:
    return SERVICES


@lru_cache(maxsize=1)
def _load_gateway_config() -> Optional[GatewayConfig]:
    try:
        return load_gateway_config()
    except ValidationError:
        logger.error("PAYSTACK_SECRET_KEY is not set; payment endpoints are disabled")
        return None


def get_gateway_config() -> Optional[GatewayConfig]:
    return _load_gateway_config()


def get_gateway(config: Optional[GatewayConfig] = Depends(get_gateway_config)) -> PaystackClient:
    if config is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment gateway not configured")
    return PaystackClient(config)


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:  # pragma: no cover - corrupt hash
        return False


def _generate_session_token() -> str:
    return secrets.token_urlsafe(48)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _is_admin_user(user: Optional[SessionUser]) -> bool:
    if user is None:
        return False
    return GLOBAL_ROLE_PRIORITY.get(user.role, 0) >= GLOBAL_ROLE_PRIORITY.get("admin", 100)


def _purge_expired_sessions() -> None:
    with POOL.connection() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM user_sessions WHERE expires_at < NOW()")
        conn.commit()


def _create_session_record(
    user_id: str,
    token: str,
    expires_at: datetime,
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> None:
    token_hash = _hash_token(token)
    with POOL.connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO user_sessions (id, user_id, token_hash, expires_at, ip_address, user_agent)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (token_hash) DO UPDATE
            SET user_id = EXCLUDED.user_id,
                expires_at = EXCLUDED.expires_at,
                ip_address = EXCLUDED.ip_address,
                user_agent = EXCLUDED.user_agent,
                created_at = NOW(),
                last_seen_at = NOW()
            """,
            (
                uuid4(),
                user_id,
                token_hash,
                expires_at,
                ip_address,
                (user_agent or "")[:512],
            ),
        )
        conn.commit()


def _delete_session_record(token: str) -> None:
    token_hash = _hash_token(token)
    with POOL.connection() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM user_sessions WHERE token_hash = %s", (token_hash,))
        conn.commit()


def _lookup_session_user(token: str) -> Optional[SessionUser]:
    token_hash = _hash_token(token)
    now = utcnow()
    with POOL.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT s.id AS session_id, s.expires_at, u.id AS user_id, u.email, u.role
            FROM user_sessions s
            JOIN app_users u ON u.id = s.user_id
            WHERE s.token_hash = %s
            """,
            (token_hash,),
        )
        row = cur.fetchone()
        if not row:
            return None
        if row["expires_at"] < now:
            cur.execute("DELETE FROM user_sessions WHERE id = %s", (row["session_id"],))
            conn.commit()
            return None
        cur.execute("UPDATE user_sessions SET last_seen_at = NOW() WHERE id = %s", (row["session_id"],))
        conn.commit()
    return SessionUser(id=row["user_id"], email=row["email"], role=row["role"])


def _get_user_by_email(email: str) -> Optional[dict[str, Any]]:
    with POOL.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            "SELECT id, email, password_hash, role FROM app_users WHERE email = %s",
            (email,),
        )
        return cur.fetchone()


def _create_user(email: str, password: str, role: str, name: Optional[str] = None) -> SessionUser:
    user_id = str(uuid4())
    password_hash = _hash_password(password)
    with POOL.connection() as conn, conn.cursor() as cur:
        cur.execute(
            "INSERT INTO app_users (id, email, name, password_hash, role) VALUES (%s, %s, %s, %s, %s)",
            (user_id, email, name, password_hash, role),
        )
        conn.commit()
    return SessionUser(id=user_id, email=email, role=role)


def _ensure_default_admin() -> None:
    with POOL.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
        cur.execute("SELECT id FROM app_users ORDER BY created_at ASC LIMIT 1")
        if cur.fetchone():
            return

    if not DEFAULT_ADMIN_PASSWORD:
        raise RuntimeError(
            "PROJECT_DESK_ADMIN_PASSWORD must be set before starting the API when no users exist"
        )

    _create_user(DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, "admin", name="Administrator")
    logger.info("Default admin user initialised", extra={"email": DEFAULT_ADMIN_EMAIL})


async def current_user_optional(request: Request) -> Optional[SessionUser]:
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        return None
    return await run_in_threadpool(_lookup_session_user, token)


def require_role(min_role: str = "member") -> Callable[..., Any]:
    async def dependency(user: Optional[SessionUser] = Depends(current_user_optional)) -> SessionUser:
        if not user:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        if GLOBAL_ROLE_PRIORITY.get(user.role, 0) < GLOBAL_ROLE_PRIORITY.get(min_role, 0):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient global permissions")
        return user

    return dependency


async def resolve_caller(
    request: Request,
    user: Optional[SessionUser] = Depends(current_user_optional),
) -> CallerIdentity:
    anonymous_id = request.cookies.get(ANONYMOUS_COOKIE_NAME) or None
    if user is None and not anonymous_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return CallerIdentity(
        user_id=user.id if user else None,
        anonymous_id=anonymous_id,
        is_admin=_is_admin_user(user),
    )


def _receipt_scheduler(background_tasks: BackgroundTasks, notifier: ReceiptNotifier) -> Callable[[PaymentReceipt], None]:
    def schedule(receipt: PaymentReceipt) -> None:
        background_tasks.add_task(notifier.send_payment_receipt, receipt, log_fields=current_log_context())

    return schedule


app = FastAPI(title="Project Desk API", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProjectDeskError)
async def _handle_project_desk_error(request: Request, exc: ProjectDeskError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        exc.message,
        extra={"route": request.url.path, "method": request.method, "status_code": exc.status_code, **exc.context},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(HTTPException)
async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid data", "details": jsonable_encoder(exc.errors())},
    )


@app.post("/auth/login", response_model=SessionResponse, tags=["auth"])
async def login(payload: LoginRequest, response: Response, request: Request) -> SessionResponse:
    email = payload.email
    user_row = await run_in_threadpool(_get_user_by_email, email)
    if not user_row or not _verify_password(payload.password, user_row["password_hash"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = _generate_session_token()
    expires_at = utcnow() + SESSION_TTL
    client = request.client
    ip_address = client.host if client else None
    user_agent = request.headers.get("user-agent")
    await run_in_threadpool(_create_session_record, user_row["id"], token, expires_at, ip_address, user_agent)

    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=int(SESSION_TTL.total_seconds()),
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite=SESSION_COOKIE_SAMESITE,
        domain=SESSION_COOKIE_DOMAIN,
        path="/",
    )

    session_user = SessionUser(id=user_row["id"], email=user_row["email"], role=user_row["role"])
    logger.info("User logged in", extra={"user_id": session_user.id, "email": session_user.email})
    return SessionResponse(user=session_user)


@app.post("/auth/logout", tags=["auth"])
async def logout(
    response: Response,
    request: Request,
    current_user: SessionUser = Depends(require_role("member")),
) -> dict[str, str]:
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if token:
        await run_in_threadpool(_delete_session_record, token)
    response.delete_cookie(
        AUTH_COOKIE_NAME,
        domain=SESSION_COOKIE_DOMAIN,
        path="/",
    )
    logger.info("User logged out", extra={"user_id": current_user.id, "email": current_user.email})
    return {"status": "logged_out"}


@app.get("/auth/session", response_model=SessionResponse, tags=["auth"])
async def session(current_user: SessionUser = Depends(require_role("member"))) -> SessionResponse:
    return SessionResponse(user=current_user)


@app.on_event("startup")
def _on_startup() -> None:
    STORE.initialise_schema()
    _ensure_default_admin()
    _purge_expired_sessions()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness check."""

    return {"status": "ok"}


@app.post("/projects", status_code=status.HTTP_201_CREATED, tags=["projects"])
async def create_project(
    payload: ProjectCreateRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    project = await run_in_threadpool(
        services.projects.create_project,
        caller,
        payload.topic,
        payload.twist,
        payload.abstract,
    )
    return {"success": True, "project": _project_payload(project)}


@app.get("/projects", tags=["projects"])
async def list_projects(
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    projects = await run_in_threadpool(services.projects.list_projects, caller)
    return {"success": True, "projects": [_project_payload(project) for project in projects]}


@app.get("/projects/analytics", tags=["projects"])
async def project_analytics(
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    analytics = await run_in_threadpool(services.progress.analytics, caller)
    return {"success": True, "analytics": analytics.model_dump(mode="json", by_alias=True)}


@app.post("/projects/{project_id}/claim", tags=["projects"])
async def claim_project(
    project_id: str,
    request: Request,
    current_user: SessionUser = Depends(require_role("member")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    anonymous_id = request.cookies.get(ANONYMOUS_COOKIE_NAME) or None
    project, changed = await run_in_threadpool(
        services.projects.claim_project,
        project_id,
        current_user.id,
        anonymous_id,
    )
    if not changed:
        return {"success": True, "message": "Already owned"}
    return {"success": True, "project": {"id": project.id, "userId": project.user_id}}


@app.patch("/projects/{project_id}/status", tags=["projects"])
async def update_project_status(
    project_id: str,
    payload: StatusUpdateRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    project = await run_in_threadpool(services.projects.update_status, project_id, payload.status, caller)
    return {"success": True, "project": _project_payload(project)}


@app.patch("/projects/{project_id}/mode", tags=["projects"])
async def update_project_mode(
    project_id: str,
    payload: ModeUpdateRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    project = await run_in_threadpool(services.projects.update_mode, project_id, payload.mode, caller)
    return {"success": True, "project": _project_payload(project)}


@app.post("/projects/{project_id}/progress", tags=["progress"])
async def record_progress(
    project_id: str,
    payload: ProgressUpdateRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    project = await run_in_threadpool(
        services.progress.update_progress,
        project_id,
        payload.milestone,
        payload.phase,
        payload.details,
        payload.metadata,
        caller,
    )
    return {
        "success": True,
        "project": jsonable_encoder(
            {
                "id": project.id,
                "progressPercentage": project.progress_percentage,
                "contentProgress": project.content_progress,
                "milestones": project.milestones,
            }
        ),
    }


@app.get("/projects/{project_id}/progress", tags=["progress"])
async def get_progress(
    project_id: str,
    caller: CallerIdentity = Depends(resolve_caller),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    snapshot = await run_in_threadpool(services.progress.get_progress, project_id, caller)
    return {"success": True, "project": snapshot.model_dump(mode="json", by_alias=True)}


@app.post("/projects/{project_id}/checkout", tags=["payments"])
async def start_checkout(
    project_id: str,
    payload: CheckoutRequest,
    current_user: SessionUser = Depends(require_role("member")),
    services: Services = Depends(get_services),
    gateway: PaystackClient = Depends(get_gateway),
) -> dict[str, Any]:
    tier = get_tier(payload.tier_id)
    if tier is None:
        raise ValidationFailure("Unknown pricing tier", tier_id=payload.tier_id)

    caller = CallerIdentity(user_id=current_user.id)
    project = await run_in_threadpool(services.projects.get_project, project_id)
    if project.user_id != current_user.id:
        raise Forbidden("Forbidden", project_id=project_id)
    if project.is_unlocked:
        raise ValidationFailure("Project already unlocked", project_id=project_id)

    reference = f"ref_{uuid4()}"
    with log_context(project_id=project_id, reference=reference, tier_id=tier.id):
        checkout = await gateway.initialize_transaction(
            email=current_user.email,
            amount=tier.price,
            reference=reference,
            metadata={"projectId": project.id, "userId": caller.user_id, "tierId": tier.id},
        )
        logger.info("Checkout initialised")
    response = CheckoutResponse(url=checkout.authorization_url, reference=checkout.reference, tier_id=tier.id, amount=tier.price)
    return response.model_dump(mode="json", by_alias=True)


@app.post("/payments/webhook", tags=["payments"])
async def paystack_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
    config: Optional[GatewayConfig] = Depends(get_gateway_config),
) -> Any:
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if config is None or not verify_signature(config.secret_key, body, signature):
        logger.warning("Invalid webhook signature received")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    try:
        envelope = json.loads(body)
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON body"})

    event_name = envelope.get("event") if isinstance(envelope, dict) else None
    logger.info("Webhook event received", extra={"event": event_name})
    if event_name != CHARGE_SUCCESS_EVENT:
        return {"received": True}

    try:
        event = PaymentEvent.model_validate(envelope.get("data") or {})
    except ValidationError:
        logger.error("Webhook charge payload is malformed", exc_info=True)
        return {"received": True, "error": "Processing error logged"}

    try:
        outcome = await run_in_threadpool(
            services.billing.record_payment,
            event,
            _receipt_scheduler(background_tasks, services.notifier),
        )
    except (PaymentReconciliationError, ProjectNotFound) as exc:
        logger.error(
            "Payment needs manual reconciliation",
            extra={"reference": event.reference, **exc.context},
        )
        return {"received": True, "error": "Processing error logged"}

    if not outcome.created:
        return {"received": True, "message": "Already processed"}
    return {"received": True}


@app.post("/payments/verify", tags=["payments"])
async def verify_payment(
    payload: VerifyRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
    gateway: PaystackClient = Depends(get_gateway),
) -> dict[str, Any]:
    event = await gateway.verify_transaction(payload.reference)
    if event is None:
        raise ValidationFailure("Transaction not successful", reference=payload.reference)

    outcome = await run_in_threadpool(
        services.billing.record_payment,
        event,
        _receipt_scheduler(background_tasks, services.notifier),
    )
    if not outcome.created:
        return {"success": True, "message": "Already verified"}
    return {"success": True, "payment": _payment_payload(outcome.payment)}


@app.get("/payments", tags=["payments"])
async def list_payments(
    current_user: SessionUser = Depends(require_role("member")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    payments = await run_in_threadpool(services.billing.payment_history, current_user.id)
    return {"success": True, "payments": [_payment_payload(payment) for payment in payments]}


@app.post("/support/topic-switch", tags=["support"])
async def request_topic_switch(
    payload: TopicSwitchCreateRequest,
    current_user: SessionUser = Depends(require_role("member")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    request = await run_in_threadpool(
        services.switches.create_request,
        current_user.id,
        payload.project_id,
        payload.reason,
        payload.explanation,
        payload.proof_url,
        payload.fee,
    )
    return {"success": True, "request": _switch_payload(request)}


@app.get("/admin/requests", tags=["admin"])
async def list_switch_requests(
    status_filter: Optional[SwitchRequestStatus] = Query(None, alias="status"),
    current_user: SessionUser = Depends(require_role("admin")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    requests = await run_in_threadpool(services.switches.list_requests, status_filter)
    return {"success": True, "requests": [_switch_payload(item) for item in requests]}


@app.post("/admin/requests/{request_id}/review", tags=["admin"])
async def review_switch_request(
    request_id: str,
    payload: ReviewDecisionRequest,
    current_user: SessionUser = Depends(require_role("admin")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    resolved = await run_in_threadpool(
        services.switches.review_request,
        request_id,
        SwitchRequestStatus(payload.status),
        current_user.id,
    )
    return {"success": True, "request": _switch_payload(resolved)}
