"""
FastAPI Application Entry Point

Team Order Sessions - group food ordering for companies.

Endpoints:
    - POST   /api/order-sessions: Create a session (manager)
    - GET    /api/order-sessions: List the company's sessions
    - GET    /api/order-sessions/current: Session open for responses now
    - GET    /api/order-sessions/{id}: Session with participants
    - PATCH  /api/order-sessions/{id}: Partial update (manager/admin)
    - DELETE /api/order-sessions/{id}: Delete (manager/admin)
    - POST   /api/order-sessions/{id}/respond: Participant response
    - POST   /api/order-sessions/{id}/sweep: Deadline sweep
    - POST   /api/order-sessions/{id}/reconcile: Add late joiners (manager/admin)
    - GET    /api/order-sessions/{id}/observe: Notification cycle
    - DELETE /api/order-sessions/{id}/notifications[/{event_id}]: Clear / dismiss
    - POST   /api/order-sessions/{id}/notifications/read: Reset unread count
    - PUT    /api/notifications/{event_id}/ack: Mark read/acknowledged/completed
    - GET    /health: System health check

Callers identify themselves with the ``X-User-Id`` header.

Version: 1.0.0
"""

import asyncio
import sys
import logging
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Request, Header
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from teamorder.core.clock import Clock, get_clock
from teamorder.core.config import get_settings, setup_logging
from teamorder.core.errors import NotFoundError, OrderSessionError, PermissionDeniedError
from teamorder.database import get_db, init_db, engine
from teamorder.schemas import (
    AckRequest,
    AckResponse,
    ErrorResponse,
    HealthResponse,
    ObserveResponse,
    ParticipantResponse,
    ReconcileResponse,
    RespondRequest,
    SessionCreate,
    SessionListResponse,
    SessionResponse,
    SessionUpdate,
    SweepResponse,
)
from teamorder.services.identity import UserProfile, get_identity_service
from teamorder.services.notifications import BaseAckStore, get_ack_store
from teamorder.services.sessions import OrderSessionService, observer_role_for
from teamorder.services.store import get_session_store

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    ack_store = get_ack_store()
    logger.info(f"✅ Ack Store: {ack_store.provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Group food ordering for companies: order sessions with a deadline, "
        "participant responses, automatic passing of non-responders and "
        "change notifications for managers and team members."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_order_session_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> OrderSessionService:
    return OrderSessionService(
        store=get_session_store(db),
        identity=get_identity_service(db),
        clock=clock,
        settings=settings,
    )


async def get_current_user(
    x_user_id: str = Header(..., description="Authenticated user id"),
    db: AsyncSession = Depends(get_db),
) -> UserProfile:
    """Resolve the caller from the ``X-User-Id`` header."""
    identity = get_identity_service(db)
    try:
        return await identity.get_user(x_user_id)
    except NotFoundError:
        raise HTTPException(status_code=401, detail="Unknown user")


def require_company(user: UserProfile) -> str:
    if user.company_id is None:
        raise NotFoundError("User is not a member of any company")
    return user.company_id


def require_manager(user: UserProfile) -> None:
    if not user.can_manage_sessions:
        raise PermissionDeniedError(
            "Only managers can perform this action",
            detail=f"role={user.role.value}",
        )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍱 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    ack_store: BaseAckStore = Depends(get_ack_store),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    store = get_session_store(db)
    db_status = "healthy" if await store.health_check() else "unhealthy"

    # Check acknowledgement store
    ack_status = "healthy" if await ack_store.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, ack_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        ack_store=ack_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER SESSION ENDPOINTS
# =============================================================================

@app.post(
    "/api/order-sessions",
    response_model=SessionResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Order Sessions"],
    summary="Create Order Session",
)
async def create_order_session(
    payload: SessionCreate,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> SessionResponse:
    """
    Create a session for the caller's company.

    Every company member is seeded as a pending participant.
    """
    logger.info(f"Creating order session for {payload.restaurant_name} (by {user.id})")
    session = await service.create_session(
        user,
        restaurant_name=payload.restaurant_name,
        restaurant_options=payload.restaurant_options,
        start_time=payload.start_time,
        end_time=payload.end_time,
        group_order_link=payload.group_order_link,
    )
    return SessionResponse.from_record(session, service.clock.now())


@app.get(
    "/api/order-sessions",
    response_model=SessionListResponse,
    tags=["Order Sessions"],
    summary="List Order Sessions",
)
async def list_order_sessions(
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> SessionListResponse:
    """Every session of the caller's company, newest first."""
    sessions = await service.list_sessions(require_company(user))
    now = service.clock.now()
    return SessionListResponse(
        total=len(sessions),
        sessions=[SessionResponse.from_record(s, now) for s in sessions],
    )


@app.get(
    "/api/order-sessions/current",
    response_model=Optional[SessionResponse],
    tags=["Order Sessions"],
    summary="Current Order Session",
)
async def current_order_session(
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> Optional[SessionResponse]:
    """The session accepting responses right now, or null."""
    session = await service.get_current_session(require_company(user))
    if session is None:
        return None
    return SessionResponse.from_record(session, service.clock.now())


@app.get(
    "/api/order-sessions/{session_id}",
    response_model=SessionResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Sessions"],
)
async def get_order_session(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> SessionResponse:
    session = await service.get_session(user, session_id)
    return SessionResponse.from_record(session, service.clock.now())


@app.patch(
    "/api/order-sessions/{session_id}",
    response_model=SessionResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Sessions"],
)
async def update_order_session(
    session_id: str,
    payload: SessionUpdate,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> SessionResponse:
    """Partial update; only the fields present in the body are changed."""
    changes = payload.model_dump(exclude_unset=True)
    session = await service.update_session(user, session_id, changes)
    return SessionResponse.from_record(session, service.clock.now())


@app.delete(
    "/api/order-sessions/{session_id}",
    responses=ERROR_RESPONSES,
    tags=["Order Sessions"],
)
async def delete_order_session(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> dict:
    await service.delete_session(user, session_id)
    return {"success": True, "session_id": session_id}


@app.post(
    "/api/order-sessions/{session_id}/respond",
    response_model=ParticipantResponse,
    responses=ERROR_RESPONSES,
    tags=["Participants"],
    summary="Respond to Order Session",
)
async def respond_to_order_session(
    session_id: str,
    payload: RespondRequest,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> ParticipantResponse:
    """
    Record the caller's response: ordered, passed, or preset with a message.

    Rejected with 409 once the ordering window has closed.
    """
    await service.get_session(user, session_id)
    participant = await service.respond(
        session_id, user.id, payload.response, payload.preset_order,
    )
    return ParticipantResponse.from_record(participant)


@app.post(
    "/api/order-sessions/{session_id}/sweep",
    response_model=SweepResponse,
    responses=ERROR_RESPONSES,
    tags=["Participants"],
    summary="Run Deadline Sweep",
)
async def sweep_order_session(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> SweepResponse:
    """Auto-pass pending participants after the deadline. Safe to repeat."""
    await service.get_session(user, session_id)
    result = await service.sweep_deadline(session_id)
    return SweepResponse.from_result(result)


@app.post(
    "/api/order-sessions/{session_id}/reconcile",
    response_model=ReconcileResponse,
    responses=ERROR_RESPONSES,
    tags=["Participants"],
)
async def reconcile_order_session(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> ReconcileResponse:
    """Seed pending rows for members who joined after the session was created."""
    require_manager(user)
    await service.get_session(user, session_id)
    added = await service.reconcile_participants(session_id)
    return ReconcileResponse(
        session_id=session_id,
        added_count=len(added),
        added=[ParticipantResponse.from_record(p) for p in added],
    )


# =============================================================================
# NOTIFICATION ENDPOINTS
# =============================================================================

@app.get(
    "/api/order-sessions/{session_id}/observe",
    response_model=ObserveResponse,
    responses=ERROR_RESPONSES,
    tags=["Notifications"],
    summary="Observe Order Session",
)
async def observe_order_session(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
    ack_store: BaseAckStore = Depends(get_ack_store),
) -> ObserveResponse:
    """
    Run one notification cycle for the caller.

    Managers and admins get the roster view, everyone else their own
    reminders. Clients poll this endpoint.
    """
    await service.get_session(user, session_id)
    observation = await service.observe(session_id, observer_role_for(user), user.id)
    acks = {record.event_id: record for record in await ack_store.list_states(user.id)}
    return ObserveResponse.from_observation(observation, service.clock.now(), acks)


@app.delete(
    "/api/order-sessions/{session_id}/notifications",
    tags=["Notifications"],
)
async def clear_notifications(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> dict:
    """Clear the caller's retained notifications. The session is untouched."""
    service.clear_notifications(session_id, observer_role_for(user), user.id)
    return {"success": True}


@app.post(
    "/api/order-sessions/{session_id}/notifications/read",
    tags=["Notifications"],
)
async def mark_notifications_read(
    session_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> dict:
    """Reset the caller's unread count, e.g. when the notification list is opened."""
    cleared = service.mark_notifications_read(session_id, observer_role_for(user), user.id)
    return {"success": True, "cleared": cleared}


@app.delete(
    "/api/order-sessions/{session_id}/notifications/{event_id}",
    responses={404: {"model": ErrorResponse}},
    tags=["Notifications"],
)
async def dismiss_notification(
    session_id: str,
    event_id: str,
    user: UserProfile = Depends(get_current_user),
    service: OrderSessionService = Depends(get_order_session_service),
) -> dict:
    if not service.dismiss_notification(session_id, observer_role_for(user), user.id, event_id):
        raise NotFoundError(f"Notification {event_id} not found")
    return {"success": True, "event_id": event_id}


@app.put(
    "/api/notifications/{event_id}/ack",
    response_model=AckResponse,
    tags=["Notifications"],
)
async def acknowledge_notification(
    event_id: str,
    payload: AckRequest,
    user: UserProfile = Depends(get_current_user),
    ack_store: BaseAckStore = Depends(get_ack_store),
    clock: Clock = Depends(get_clock),
) -> AckResponse:
    """Mark a notification as read, acknowledged or completed for the caller."""
    record = await ack_store.set_state(user.id, event_id, payload.state, clock.now())
    return AckResponse(**record.to_dict())


@app.get(
    "/api/notifications/{event_id}/ack",
    response_model=AckResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Notifications"],
)
async def get_notification_ack(
    event_id: str,
    user: UserProfile = Depends(get_current_user),
    ack_store: BaseAckStore = Depends(get_ack_store),
) -> AckResponse:
    record = await ack_store.get_state(user.id, event_id)
    if record is None:
        raise NotFoundError(f"No acknowledgement for notification {event_id}")
    return AckResponse(**record.to_dict())


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderSessionError)
async def order_session_exception_handler(request: Request, exc: OrderSessionError) -> JSONResponse:
    """Map domain errors to their HTTP status with a structured body."""
    if exc.http_status >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.code} - {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.code} - {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "code": "internal_error",
            "retryable": False,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("teamorder.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
