"""
SQLAlchemy Session Store

Production implementation of the session store on top of an ``AsyncSession``.
Participant writes are single statements (``INSERT .. ON CONFLICT DO UPDATE``
or a conditional ``UPDATE``) so concurrent responders and sweepers are
linearised by the database row, not by application locks.

Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teamorder.core.errors import ConflictError, NotFoundError, OrderSessionError, StoreUnavailableError
from teamorder.models import OrderSession, Participant, ParticipantStatus, SessionStatus
from teamorder.services.store.base import BaseSessionStore, ParticipantRecord, SessionRecord

logger = logging.getLogger(__name__)

PERMISSION_DENIED_SQLSTATE = "42501"

UPSERT_COLUMNS = ("user_name", "status", "preset_order", "updated_at")


def _is_permission_error(exc: DBAPIError) -> bool:
    """Detect row-level-security / grant failures, which retrying cannot fix."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == PERMISSION_DENIED_SQLSTATE:
        return True
    return "permission denied" in str(orig or exc).lower()


def participant_record(row: Participant) -> ParticipantRecord:
    return ParticipantRecord(
        session_id=row.session_id,
        user_id=row.user_id,
        user_name=row.user_name,
        status=row.status,
        preset_order=row.preset_order,
        updated_at=row.updated_at,
    )


def session_record(row: OrderSession, participants: list[Participant]) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        company_id=row.company_id,
        restaurant_name=row.restaurant_name,
        restaurant_options=list(row.restaurant_options or []),
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        group_order_link=row.group_order_link,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        participants=tuple(participant_record(p) for p in participants),
    )


class SqlSessionStore(BaseSessionStore):
    """Session store backed by PostgreSQL (production) or SQLite (tests)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def provider_name(self) -> str:
        return "sql"

    # =========================================================================
    # ERROR TRANSLATION
    # =========================================================================

    @asynccontextmanager
    async def _guard(self, action: str, commit: bool = False) -> AsyncIterator[None]:
        """Run a unit of work, translating SQLAlchemy failures into store errors."""
        try:
            yield
            if commit:
                await self.db.commit()
        except OrderSessionError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Write conflict while {action}: {e.orig}")
            raise ConflictError(f"Write conflict while {action}", detail=str(e.orig)) from e
        except DBAPIError as e:
            await self.db.rollback()
            permission = _is_permission_error(e)
            if permission:
                logger.error(f"Store permission denied while {action}: {e.orig}")
            else:
                logger.error(f"Store failure while {action}: {e.orig}")
            raise StoreUnavailableError(
                f"Session store failed while {action}",
                detail=str(e.orig),
                permission=permission,
            ) from e
        except SQLAlchemyError as e:
            # Pool timeouts and similar driver-independent failures
            await self.db.rollback()
            logger.error(f"Store failure while {action}: {e}")
            raise StoreUnavailableError(f"Session store failed while {action}", detail=str(e)) from e

    # =========================================================================
    # READS
    # =========================================================================

    async def _load_participants(self, session_ids: list[str]) -> dict[str, list[Participant]]:
        grouped: dict[str, list[Participant]] = {sid: [] for sid in session_ids}
        if not session_ids:
            return grouped
        result = await self.db.execute(
            select(Participant)
            .where(Participant.session_id.in_(session_ids))
            .order_by(Participant.id)
            .execution_options(populate_existing=True)
        )
        for row in result.scalars().all():
            grouped[row.session_id].append(row)
        return grouped

    async def _records(self, rows: list[OrderSession]) -> list[SessionRecord]:
        participants = await self._load_participants([r.id for r in rows])
        return [session_record(r, participants[r.id]) for r in rows]

    async def get_session(self, session_id: str) -> SessionRecord:
        async with self._guard("loading session"):
            result = await self.db.execute(
                select(OrderSession)
                .where(OrderSession.id == session_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Order session {session_id} not found")
            records = await self._records([row])
        return records[0]

    async def list_sessions(self, company_id: str) -> list[SessionRecord]:
        async with self._guard("listing sessions"):
            result = await self.db.execute(
                select(OrderSession)
                .where(OrderSession.company_id == company_id)
                .order_by(OrderSession.created_at.desc(), OrderSession.start_time.desc())
                .execution_options(populate_existing=True)
            )
            records = await self._records(list(result.scalars().all()))
        return records

    async def list_active_sessions(self, company_id: Optional[str] = None) -> list[SessionRecord]:
        query = select(OrderSession).where(
            or_(
                OrderSession.status.is_(None),
                OrderSession.status.notin_([SessionStatus.CLOSED, SessionStatus.COMPLETED]),
            )
        )
        if company_id is not None:
            query = query.where(OrderSession.company_id == company_id)
        query = query.order_by(OrderSession.created_at.desc(), OrderSession.start_time.desc())

        async with self._guard("listing active sessions"):
            result = await self.db.execute(query.execution_options(populate_existing=True))
            records = await self._records(list(result.scalars().all()))
        return records

    async def list_participants(self, session_id: str) -> list[ParticipantRecord]:
        async with self._guard("listing participants"):
            grouped = await self._load_participants([session_id])
        return [participant_record(p) for p in grouped[session_id]]

    # =========================================================================
    # SESSION WRITES
    # =========================================================================

    async def create_session(
        self,
        fields: dict[str, Any],
        participants: list[dict[str, Any]],
    ) -> SessionRecord:
        async with self._guard("creating session", commit=True):
            row = OrderSession(**fields)
            self.db.add(row)
            await self.db.flush()
            self.db.add_all(Participant(session_id=row.id, **p) for p in participants)
        logger.info(f"Order session {row.id} stored with {len(participants)} participants")
        return await self.get_session(row.id)

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> SessionRecord:
        async with self._guard("updating session", commit=True):
            result = await self.db.execute(
                update(OrderSession).where(OrderSession.id == session_id).values(**fields)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Order session {session_id} not found")
        return await self.get_session(session_id)

    async def update_session_status(self, session_id: str, status: SessionStatus) -> SessionRecord:
        return await self.update_session(session_id, {"status": status})

    async def delete_session(self, session_id: str) -> None:
        async with self._guard("deleting session", commit=True):
            await self.db.execute(delete(Participant).where(Participant.session_id == session_id))
            result = await self.db.execute(delete(OrderSession).where(OrderSession.id == session_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Order session {session_id} not found")

    # =========================================================================
    # PARTICIPANT WRITES
    # =========================================================================

    def _upsert_statement(self, session_id: str, user_id: str, values: dict[str, Any]):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            insert_fn = pg_insert
        elif dialect == "sqlite":
            insert_fn = sqlite_insert
        else:
            raise StoreUnavailableError(f"Upsert is not supported on the {dialect} dialect")

        stmt = insert_fn(Participant).values(session_id=session_id, user_id=user_id, **values)
        return stmt.on_conflict_do_update(
            index_elements=[Participant.session_id, Participant.user_id],
            set_={column: stmt.excluded[column] for column in values},
        )

    async def upsert_participant(
        self,
        session_id: str,
        user_id: str,
        fields: dict[str, Any],
        expected_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        values = {k: v for k, v in fields.items() if k in UPSERT_COLUMNS}

        async with self._guard("writing participant", commit=True):
            if expected_status is None:
                await self.db.execute(self._upsert_statement(session_id, user_id, values))
            else:
                result = await self.db.execute(
                    update(Participant)
                    .where(
                        Participant.session_id == session_id,
                        Participant.user_id == user_id,
                        Participant.status == expected_status,
                    )
                    .values(**values)
                )
                if result.rowcount == 0:
                    logger.debug(
                        f"Conditional write skipped for {user_id} in {session_id}: "
                        f"status is no longer {expected_status.value}"
                    )
                    return None

        async with self._guard("reading participant"):
            result = await self.db.execute(
                select(Participant)
                .where(Participant.session_id == session_id, Participant.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()
        return participant_record(row)

    async def health_check(self) -> bool:
        try:
            await self.db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Store health check failed: {e}")
            return False
