"""
Domain Error Hierarchy

Every failure the order-session core can report to a caller. Each error
carries a machine-readable ``code``, the HTTP status the API maps it to, and
whether retrying the same request can succeed. Clients use ``retryable`` to
tell a closed ordering window (accept the outcome) from a transient store
failure (try again).
"""

from typing import Optional


class OrderSessionError(Exception):
    """Base class for all order-session errors."""

    code = "order_session_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.message,
            "detail": self.detail,
            "code": self.code,
            "retryable": self.retryable,
        }


class NotFoundError(OrderSessionError):
    code = "not_found"
    http_status = 404


class PermissionDeniedError(OrderSessionError):
    code = "permission_denied"
    http_status = 403


class InvalidSessionTimesError(OrderSessionError):
    """Raised when ``end_time`` does not come strictly after ``start_time``."""
    code = "invalid_session_times"
    http_status = 422


class SessionNotActiveError(OrderSessionError):
    """The response arrived outside the session's ordering window."""
    code = "session_not_active"
    http_status = 409

    def __init__(self, session_id: str, phase: str):
        super().__init__(
            f"Order session {session_id} is not accepting responses",
            detail=f"The ordering window is {phase}; responses can no longer be changed"
            if phase in ("closed", "completed")
            else f"The ordering window is {phase}",
        )
        self.session_id = session_id
        self.phase = phase


class MissingPresetOrderError(OrderSessionError):
    code = "missing_preset_order"
    http_status = 422

    def __init__(self):
        super().__init__(
            "Preset order is required when response is preset",
            detail="Provide a non-empty preset_order message",
        )


class InvalidTransitionError(OrderSessionError):
    code = "invalid_transition"
    http_status = 422


class ConflictError(OrderSessionError):
    """A store-level write conflict, e.g. a unique constraint race."""
    code = "conflict"
    http_status = 409
    retryable = True


class LookupFailedError(OrderSessionError):
    """Identity lookup failed. Callers degrade instead of aborting."""
    code = "lookup_failed"
    http_status = 502
    retryable = True


class StoreUnavailableError(OrderSessionError):
    """The session store could not be reached or refused the operation."""
    code = "store_unavailable"
    http_status = 503
    retryable = True

    def __init__(self, message: str, detail: Optional[str] = None, permission: bool = False):
        super().__init__(message, detail)
        self.permission = permission
        if permission:
            # Configuration problem, retrying will not help
            self.code = "store_permission_denied"
            self.retryable = False
