"""
Session phase calculation.

Two views of a session's state are kept apart on purpose:

    phase()           display label, always derived from the clock
    routing_status()  persisted decision input; the stored status wins

Both ends of the ordering window are inclusive.
"""

import enum
from datetime import datetime
from typing import Iterable, Optional

from teamorder.core.clock import ensure_utc
from teamorder.models import ParticipantStatus, SessionStatus
from teamorder.services.store.base import ParticipantRecord, SessionRecord


class Phase(str, enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    CLOSED = "closed"
    COMPLETED = "completed"


def phase(
    session: SessionRecord,
    now: datetime,
    participants: Optional[Iterable[ParticipantRecord]] = None,
) -> Phase:
    """
    Display phase of ``session`` at ``now``.

    After the deadline the label is ``completed`` once no participant is
    still pending, ``closed`` otherwise. ``participants`` defaults to the ones
    attached to the record. The stored status is never consulted.
    """
    now = ensure_utc(now)
    if now < session.start_time:
        return Phase.UPCOMING
    if now <= session.end_time:
        return Phase.ACTIVE

    if participants is None:
        participants = session.participants
    if any(p.status == ParticipantStatus.PENDING for p in participants):
        return Phase.CLOSED
    return Phase.COMPLETED


def routing_status(session: SessionRecord, now: datetime) -> SessionStatus:
    """
    Status used for persisted decisions (sweeps, accepting responses).

    An explicit status always wins. Without one the session is ``upcoming``
    until it starts and ``active`` afterwards; it stays active past the
    deadline until the sweeper (or a manager) closes it.
    """
    if session.status is not None:
        return session.status
    if ensure_utc(now) < session.start_time:
        return SessionStatus.UPCOMING
    return SessionStatus.ACTIVE


def accepts_responses(session: SessionRecord, now: datetime) -> bool:
    """True while inside the window and not closed by a sweep or a manager."""
    if session.status in (SessionStatus.CLOSED, SessionStatus.COMPLETED):
        return False
    return phase(session, now) == Phase.ACTIVE


def seconds_remaining(session: SessionRecord, now: datetime) -> float:
    return (session.end_time - ensure_utc(now)).total_seconds()
