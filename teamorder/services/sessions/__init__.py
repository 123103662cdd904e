"""
Order session core: phase, participant state machine, deadline sweeper and
the service that ties them to the store and the notification engine.
"""

from teamorder.services.sessions.phase import (
    Phase,
    accepts_responses,
    phase,
    routing_status,
    seconds_remaining,
)
from teamorder.services.sessions.service import (
    Observation,
    OrderSessionService,
    observer_role_for,
)
from teamorder.services.sessions.state_machine import RESPONSE_STATES, ParticipantStateMachine
from teamorder.services.sessions.sweeper import DeadlineSweeper, SweepFailure, SweepResult

__all__ = [
    "Phase",
    "phase",
    "routing_status",
    "accepts_responses",
    "seconds_remaining",
    "Observation",
    "OrderSessionService",
    "observer_role_for",
    "ParticipantStateMachine",
    "RESPONSE_STATES",
    "DeadlineSweeper",
    "SweepFailure",
    "SweepResult",
]
