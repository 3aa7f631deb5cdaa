"""
RPFAAS Review — HTTP API for the review workflow.

FastAPI application providing:
- Submit / resubmit of assessment records
- Reviewer actions (claim, return, approve)
- The municipality-scoped review queue
- Field-level review comments
- Review history of a record
- Permissions of the signed-in user, and role/user administration

Every response uses the envelope ``{"success": bool, "data"?: ..., "error"?: str}``.
Callers authenticate with a bearer access token issued by the identity
provider.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from rpfaas_review.config import settings
from rpfaas_review.workflow.actions import ReviewActionProcessor, parse_kind
from rpfaas_review.workflow.cache import TagCache
from rpfaas_review.workflow.comments import CommentService
from rpfaas_review.workflow.errors import NotFound, ReviewWorkflowError, Unauthorized
from rpfaas_review.workflow.history import HistoryService
from rpfaas_review.workflow.permissions import PermissionResolver
from rpfaas_review.workflow.queue import ReviewQueueProjector
from rpfaas_review.workflow.schema import Principal
from rpfaas_review.workflow.transitions import available_actions
from rpfaas_review.workflow.users import UserAdminService

logger = logging.getLogger(__name__)


# ── Pydantic request models ────────────────────────────────────


class ReviewRequest(BaseModel):
    action: str  # "claim" | "return" | "approve"
    note: str | None = None


class CommentRequest(BaseModel):
    field_name: str | None = None
    comment_text: str | None = None
    suggested_value: str | None = None
    parent_id: str | None = None


class CommentUpdateRequest(BaseModel):
    is_resolved: bool = True


class RolePermissionsRequest(BaseModel):
    permissions: dict[str, dict[str, bool]] = {}


class UserUpdateRequest(BaseModel):
    role: str | None = None
    municipality: str | None = None
    full_name: str | None = None
    is_active: bool | None = None


class ReviewState:
    """Application services, wired at startup."""

    def __init__(self) -> None:
        self.store: Any = None
        self.identity: Any = None
        self.cache: TagCache | None = None
        self.resolver: PermissionResolver | None = None
        self.processor: ReviewActionProcessor | None = None
        self.queue: ReviewQueueProjector | None = None
        self.comments: CommentService | None = None
        self.history: HistoryService | None = None
        self.users: UserAdminService | None = None
        self.startup_time: datetime = datetime.now(timezone.utc)

    def configure(self, store: Any, identity: Any, cache: TagCache | None = None) -> None:
        """Build every workflow service over one store and one shared cache."""
        self.store = store
        self.identity = identity
        self.cache = cache if cache is not None else TagCache(
            default_ttl=settings.list_cache_ttl_seconds,
        )
        self.resolver = PermissionResolver(
            store, self.cache, ttl_seconds=settings.permission_cache_ttl_seconds,
        )
        self.processor = ReviewActionProcessor(store, self.resolver, self.cache)
        self.queue = ReviewQueueProjector(
            store, self.resolver, self.cache, ttl_seconds=settings.list_cache_ttl_seconds,
        )
        self.comments = CommentService(store)
        self.history = HistoryService(store)
        self.users = UserAdminService(store, self.resolver)


state = ReviewState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup & shutdown lifecycle — connect to the store and identity provider."""
    if state.store is None:
        from rpfaas_review.integrations.identity import SupabaseIdentityProvider
        from rpfaas_review.store.service import RecordStore

        store = RecordStore(settings.database_url_sync)
        identity = SupabaseIdentityProvider(
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            timeout=settings.identity_timeout_seconds,
        )
        state.configure(store, identity)
        logger.info("Review API connected to record store")

    yield

    # Shutdown
    close = getattr(state.identity, "close", None)
    if close is not None:
        await close()
    logger.info("Review API shut down")


app = FastAPI(
    title="RPFAAS Review",
    description="Review workflow for RPFAAS assessment records",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Envelope and error handlers ────────────────────────────────


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(body, status_code=status_code)


def fail(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


@app.exception_handler(ReviewWorkflowError)
async def workflow_error_handler(request: Request, exc: ReviewWorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return fail(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {where}: {first.get('msg')}" if where else "Invalid request"
    else:
        message = "Invalid request"
    return fail(message, 400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return fail(str(exc.detail), exc.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s unexpected error", request.method, request.url.path)
    return fail("Server error", 500)


# ── Authentication ─────────────────────────────────────────────


async def current_principal(request: Request) -> Principal:
    """Resolve the bearer token to a principal, or fail with 401."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized()
    principal = await state.identity.get_principal(token.strip())
    if principal is None:
        raise Unauthorized()
    return principal


# ── Routes: Review actions ─────────────────────────────────────


@app.post("/records/{kind}/{record_id}/submit")
def submit_record(kind: str, record_id: int, principal: Principal = Depends(current_principal)):
    """Submit a draft, or re-submit a returned record."""
    record = state.processor.submit(kind, record_id, principal.id)
    return ok(record)


@app.post("/records/{kind}/{record_id}/review")
def review_record(
    kind: str,
    record_id: int,
    body: ReviewRequest,
    principal: Principal = Depends(current_principal),
):
    """Claim, return or approve a record."""
    record = state.processor.review(kind, record_id, principal.id, body.action, note=body.note)
    return ok(record)


@app.get("/records/{kind}/{record_id}/actions")
def record_actions(kind: str, record_id: int, principal: Principal = Depends(current_principal)):
    """Actions legal from the record's current status, filtered to the caller's role."""
    record_kind = parse_kind(kind)
    record = state.store.get_record(record_kind, record_id)
    if record is None:
        raise NotFound(f"{record_kind.label} record {record_id} not found")
    actor = state.resolver.resolve_actor(principal.id)
    return ok({
        "status": record.status,
        "actions": [a for a in available_actions(record.status) if actor.can(a)],
    })


@app.get("/records/{kind}/{record_id}/history")
def record_history(kind: str, record_id: int, principal: Principal = Depends(current_principal)):
    return ok(state.history.list_history(kind, record_id))


# ── Routes: Review queue ───────────────────────────────────────


@app.get("/review-queue")
def review_queue(
    status: str | None = None,
    kind: str | None = None,
    form_type: str | None = None,
    principal: Principal = Depends(current_principal),
):
    """Records awaiting review, scoped to the caller's municipality."""
    items = state.queue.get_queue(principal.id, status_filter=status, kind_filter=kind or form_type)
    return ok(items)


# ── Routes: Comments ───────────────────────────────────────────


@app.get("/records/{kind}/{record_id}/comments")
def list_comments(kind: str, record_id: int, principal: Principal = Depends(current_principal)):
    return ok(state.comments.list_comments(kind, record_id))


@app.post("/records/{kind}/{record_id}/comments")
def add_comment(
    kind: str,
    record_id: int,
    body: CommentRequest,
    principal: Principal = Depends(current_principal),
):
    comment = state.comments.add_comment(
        kind,
        record_id,
        principal.id,
        body.comment_text,
        field_refs=body.field_name,
        suggested_value=body.suggested_value,
        parent_id=body.parent_id,
    )
    return ok(comment, status_code=201)


@app.patch("/records/{kind}/{record_id}/comments/{comment_id}")
def update_comment(
    kind: str,
    record_id: int,
    comment_id: str,
    body: CommentUpdateRequest,
    principal: Principal = Depends(current_principal),
):
    comment = state.comments.resolve_comment(
        kind, record_id, comment_id, principal.id, resolved=body.is_resolved,
    )
    return ok(comment)


# ── Routes: Permissions ────────────────────────────────────────


@app.get("/my-permissions")
def my_permissions(principal: Principal = Depends(current_principal)):
    """Role and feature map of the signed-in user."""
    return ok(state.resolver.get_permissions(principal.id))


@app.get("/role-permissions")
def get_role_permissions(principal: Principal = Depends(current_principal)):
    actor = state.resolver.resolve_actor(principal.id)
    return ok({"permissions": state.resolver.role_matrix(actor)})


@app.put("/role-permissions")
def put_role_permissions(
    body: RolePermissionsRequest,
    principal: Principal = Depends(current_principal),
):
    actor = state.resolver.resolve_actor(principal.id)
    matrix = state.resolver.replace_overrides(actor, body.permissions)
    return ok({"permissions": matrix})


# ── Routes: Users ──────────────────────────────────────────────


@app.get("/users")
def list_users(principal: Principal = Depends(current_principal)):
    actor = state.resolver.resolve_actor(principal.id)
    return ok(state.users.list_users(actor))


@app.patch("/users/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdateRequest,
    principal: Principal = Depends(current_principal),
):
    actor = state.resolver.resolve_actor(principal.id)
    user = state.users.update_user(actor, user_id, **body.model_dump(exclude_unset=True))
    return ok(user)


# ── Health Check ───────────────────────────────────────────────


@app.get("/health")
async def health():
    """Health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": (datetime.now(timezone.utc) - state.startup_time).total_seconds(),
        "store_available": state.store is not None,
        "identity_available": state.identity is not None,
    })
