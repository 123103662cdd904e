"""
                        Services Module

Contains all business logic services with the hybrid architecture pattern.
Backends with an external dependency have a Mock (development) and a Real
(production) implementation.

Services:
    - store: Session store (in-memory or SQLAlchemy)
    - identity: User profiles and company rosters (Mock or database)
    - sessions: Session lifecycle, participant responses, deadline sweep
    - notifications: Change notifications and acknowledgement marks (Mock or Redis)
"""

from teamorder.services.sessions import OrderSessionService

__all__ = ["OrderSessionService"]
