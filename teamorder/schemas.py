"""
Pydantic Schemas for Request/Response Validation

Order sessions, participant responses, deadline sweeps and notification
observation.

Version: 1.0.0
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from teamorder.services.notifications import AckRecord, AckState, NotificationEvent
from teamorder.services.sessions import Observation, SweepResult, phase, routing_status
from teamorder.services.store.base import ParticipantRecord, SessionRecord


# =============================================================================
# ENUMS
# =============================================================================

class ManualStatusEnum(str, Enum):
    """Statuses a manager may store; null returns to the time-derived status."""
    ACTIVE = "active"
    CLOSED = "closed"


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SessionCreate(BaseModel):
    """Request schema for creating an order session."""
    restaurant_name: str = Field(..., min_length=1, max_length=200, examples=["Thai Palace"])
    restaurant_options: List[str] = Field(default_factory=list, examples=[["Thai Palace", "Sushi Go"]])
    start_time: datetime = Field(..., examples=["2026-10-18T11:00:00Z"])
    end_time: datetime = Field(..., examples=["2026-10-18T11:45:00Z"])
    group_order_link: Optional[str] = Field(None, max_length=500)

    @field_validator('restaurant_name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Restaurant name cannot be blank')
        return v

    @field_validator('restaurant_options')
    @classmethod
    def clean_options(cls, v: List[str]) -> List[str]:
        return [option.strip() for option in v if option.strip()]


class SessionUpdate(BaseModel):
    """Partial update; only fields that are sent are applied."""
    restaurant_name: Optional[str] = Field(None, min_length=1, max_length=200)
    restaurant_options: Optional[List[str]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    group_order_link: Optional[str] = Field(None, max_length=500)
    status: Optional[ManualStatusEnum] = None


class RespondRequest(BaseModel):
    """A participant's response: ordered, passed or preset."""
    response: str = Field(..., examples=["ordered", "passed", "preset"])
    preset_order: Optional[str] = Field(None, max_length=1000, examples=["Pad thai, no peanuts"])


class AckRequest(BaseModel):
    state: AckState = Field(..., examples=["read", "acknowledged", "completed"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ParticipantResponse(BaseModel):
    """One participant row."""
    session_id: str
    user_id: str
    user_name: str
    status: str
    preset_order: Optional[str]
    auto_passed: bool = False
    updated_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: ParticipantRecord) -> "ParticipantResponse":
        return cls(
            session_id=record.session_id,
            user_id=record.user_id,
            user_name=record.user_name,
            status=record.status.value,
            preset_order=record.preset_order,
            auto_passed=record.is_auto_passed,
            updated_at=record.updated_at,
        )


class SessionResponse(BaseModel):
    """Response schema for a single order session."""
    id: str
    company_id: str
    created_by: Optional[str]
    restaurant_name: str
    restaurant_options: List[str]
    group_order_link: Optional[str]
    start_time: datetime
    end_time: datetime
    status: Optional[str]
    routing_status: str
    phase: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    participants: List[ParticipantResponse]

    @classmethod
    def from_record(cls, record: SessionRecord, now: datetime) -> "SessionResponse":
        return cls(
            id=record.id,
            company_id=record.company_id,
            created_by=record.created_by,
            restaurant_name=record.restaurant_name,
            restaurant_options=list(record.restaurant_options or []),
            group_order_link=record.group_order_link,
            start_time=record.start_time,
            end_time=record.end_time,
            status=record.status.value if record.status else None,
            routing_status=routing_status(record, now).value,
            phase=phase(record, now).value,
            created_at=record.created_at,
            updated_at=record.updated_at,
            participants=[ParticipantResponse.from_record(p) for p in record.participants],
        )


class SessionListResponse(BaseModel):
    """Response for listing a company's sessions."""
    total: int
    sessions: List[SessionResponse]


class SweepFailureResponse(BaseModel):
    user_id: str
    error: str
    code: str


class SweepResponse(BaseModel):
    """Outcome of a deadline sweep."""
    session_id: str
    auto_passed_count: int
    auto_passed_user_ids: List[str]
    failed_count: int
    failures: List[SweepFailureResponse]
    session_closed: bool
    skipped_reason: Optional[str] = None

    @classmethod
    def from_result(cls, result: SweepResult) -> "SweepResponse":
        return cls(**result.to_dict())


class ReconcileResponse(BaseModel):
    session_id: str
    added_count: int
    added: List[ParticipantResponse]


class NotificationEventResponse(BaseModel):
    """One notification as rendered to an observer."""
    id: str
    type: str
    title: str
    message: str
    timestamp: datetime
    session_id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    ack_state: Optional[str] = None

    @classmethod
    def from_event(cls, event: NotificationEvent, ack: Optional[AckRecord] = None) -> "NotificationEventResponse":
        return cls(
            **event.to_dict(),
            ack_state=ack.state.value if ack else None,
        )


class ObserveResponse(BaseModel):
    """Result of one observation cycle."""
    role: str
    phase: str
    new_count: int
    unread_count: int
    notifications: List[NotificationEventResponse]
    session: SessionResponse

    @classmethod
    def from_observation(
        cls,
        observation: Observation,
        now: datetime,
        acks: Optional[dict[str, AckRecord]] = None,
    ) -> "ObserveResponse":
        acks = acks or {}
        return cls(
            role=observation.role.value,
            phase=observation.phase.value,
            new_count=len(observation.new_events),
            unread_count=observation.state.unread_count,
            notifications=[
                NotificationEventResponse.from_event(e, acks.get(e.id))
                for e in observation.state.events
            ],
            session=SessionResponse.from_record(observation.session, now),
        )


class AckResponse(BaseModel):
    event_id: str
    user_id: str
    state: str
    updated_at: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    retryable: bool = False


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    ack_store: str
    timestamp: datetime
