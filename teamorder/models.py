"""
SQLAlchemy Database Models

Order sessions, their participants, and the company roster the identity
collaborator reads from.

Version: 1.0.0
"""

import enum
import uuid

from sqlalchemy import Column, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Enum
from sqlalchemy.sql import func

from teamorder.database import Base, UTCDateTime


# Written into ``preset_order`` by the deadline sweep; distinguishes an
# automatic pass from one the participant chose.
AUTO_PASS_MESSAGE = "Auto-passed due to deadline"


class SessionStatus(str, enum.Enum):
    """Stored session status. Absent (NULL) means "derive from time"."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    CLOSED = "closed"
    COMPLETED = "completed"


class ParticipantStatus(str, enum.Enum):
    """Participant response workflow."""
    PENDING = "pending"
    ORDERED = "ordered"
    PASSED = "passed"
    PRESET = "preset"


class UserRole(str, enum.Enum):
    MANAGER = "manager"
    ADMIN = "admin"
    TEAM_MEMBER = "team_member"


def _new_id() -> str:
    return str(uuid.uuid4())


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self):
        return f"<Company {self.id} - {self.name}>"


class User(Base):
    """
    Company member as known to the identity provider.

    ``id`` is the external auth subject; names are optional because the
    provider does not guarantee them.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    company_id = Column(String(64), ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True)
    role = Column(Enum(UserRole), default=UserRole.TEAM_MEMBER, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    username = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self):
        return f"<User {self.id} - {self.role.value}>"


class OrderSession(Base):
    """
    A time-boxed group order against a restaurant.

    Invariant: ``end_time > start_time``. Participants are deleted with the
    session (FK cascade, and explicitly by the SQL store).
    """
    __tablename__ = "order_sessions"

    id = Column(String(64), primary_key=True, default=_new_id)
    company_id = Column(String(64), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(String(64), nullable=True)

    # =========================================================================
    # RESTAURANT
    # =========================================================================
    restaurant_name = Column(String(200), nullable=False)
    restaurant_options = Column(JSON, nullable=False, default=list)
    group_order_link = Column(String(500), nullable=True)

    # =========================================================================
    # ORDERING WINDOW
    # =========================================================================
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False, index=True)
    status = Column(Enum(SessionStatus), nullable=True, index=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        status = self.status.value if self.status else "derived"
        return f"<OrderSession {self.id} - {self.restaurant_name} - {status}>"


class Participant(Base):
    """One user's response within a session; one row per (session, user)."""
    __tablename__ = "order_session_participants"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_participant_session_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(64),
        ForeignKey("order_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(200), nullable=False)
    status = Column(Enum(ParticipantStatus), default=ParticipantStatus.PENDING, nullable=False)
    preset_order = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, server_default=func.now())

    @property
    def is_auto_passed(self) -> bool:
        return self.status == ParticipantStatus.PASSED and self.preset_order == AUTO_PASS_MESSAGE

    def __repr__(self):
        return f"<Participant {self.user_id}@{self.session_id} - {self.status.value}>"
