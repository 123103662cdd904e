"""
In-Memory Session Store

Dictionary-backed implementation of the session store for development and
unit tests. Every method body runs without awaiting, so each call is atomic
with respect to other coroutines on the same event loop, which gives the same
per-row linearisability the SQL store gets from the database.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from teamorder.core.errors import ConflictError, NotFoundError
from teamorder.models import ParticipantStatus, SessionStatus
from teamorder.services.store.base import BaseSessionStore, ParticipantRecord, SessionRecord

logger = logging.getLogger(__name__)

SESSION_FIELDS = {
    "id", "company_id", "restaurant_name", "restaurant_options", "start_time",
    "end_time", "status", "group_order_link", "created_by",
}


class MemorySessionStore(BaseSessionStore):

    def __init__(self):
        self._sessions: dict[str, SessionRecord] = {}
        # (session_id, user_id) -> record, insertion ordered
        self._participants: dict[tuple[str, str], ParticipantRecord] = {}
        self._sequence: dict[str, int] = {}
        logger.info("MemorySessionStore initialized")

    @property
    def provider_name(self) -> str:
        return "memory"

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _attach(self, record: SessionRecord) -> SessionRecord:
        return record.with_participants(
            p for (sid, _), p in self._participants.items() if sid == record.id
        )

    def _require(self, session_id: str) -> SessionRecord:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise NotFoundError(f"Order session {session_id} not found") from None

    def _newest_first(self, records) -> list[SessionRecord]:
        # created_at ties are broken by insertion order
        ordered = sorted(records, key=lambda r: (r.created_at, self._sequence[r.id]), reverse=True)
        return [self._attach(r) for r in ordered]

    # =========================================================================
    # READS
    # =========================================================================

    async def get_session(self, session_id: str) -> SessionRecord:
        return self._attach(self._require(session_id))

    async def list_sessions(self, company_id: str) -> list[SessionRecord]:
        return self._newest_first(r for r in self._sessions.values() if r.company_id == company_id)

    async def list_active_sessions(self, company_id: Optional[str] = None) -> list[SessionRecord]:
        closed = (SessionStatus.CLOSED, SessionStatus.COMPLETED)
        return self._newest_first(
            r for r in self._sessions.values()
            if r.status not in closed and (company_id is None or r.company_id == company_id)
        )

    async def list_participants(self, session_id: str) -> list[ParticipantRecord]:
        return list(self._attach(self._require(session_id)).participants)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_session(
        self,
        fields: dict[str, Any],
        participants: list[dict[str, Any]],
    ) -> SessionRecord:
        values = {k: v for k, v in fields.items() if k in SESSION_FIELDS}
        values.setdefault("id", str(uuid.uuid4()))
        if values["id"] in self._sessions:
            raise ConflictError(f"Order session {values['id']} already exists")

        seen = set()
        for p in participants:
            if p["user_id"] in seen:
                raise ConflictError(f"Duplicate participant {p['user_id']}")
            seen.add(p["user_id"])

        now = self._now()
        record = SessionRecord(created_at=now, updated_at=now, **values)
        self._sessions[record.id] = record
        self._sequence[record.id] = len(self._sequence)
        for p in participants:
            self._participants[(record.id, p["user_id"])] = ParticipantRecord(
                session_id=record.id,
                user_id=p["user_id"],
                user_name=p["user_name"],
                status=p.get("status", ParticipantStatus.PENDING),
                preset_order=p.get("preset_order"),
                updated_at=p.get("updated_at", now),
            )
        return self._attach(record)

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> SessionRecord:
        current = self._require(session_id)
        values = {k: v for k, v in fields.items() if k in SESSION_FIELDS and k != "id"}
        updated = replace(current, updated_at=self._now(), **values)
        self._sessions[session_id] = updated
        return self._attach(updated)

    async def update_session_status(self, session_id: str, status: SessionStatus) -> SessionRecord:
        return await self.update_session(session_id, {"status": status})

    async def delete_session(self, session_id: str) -> None:
        self._require(session_id)
        del self._sessions[session_id]
        for key in [k for k in self._participants if k[0] == session_id]:
            del self._participants[key]

    async def upsert_participant(
        self,
        session_id: str,
        user_id: str,
        fields: dict[str, Any],
        expected_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        self._require(session_id)
        key = (session_id, user_id)
        current = self._participants.get(key)

        if expected_status is not None and (current is None or current.status != expected_status):
            return None

        values = {k: v for k, v in fields.items() if k in ("user_name", "status", "preset_order", "updated_at")}
        if current is None:
            record = ParticipantRecord(session_id=session_id, user_id=user_id, **values)
        else:
            record = replace(current, **values)
        self._participants[key] = record
        return record

    async def health_check(self) -> bool:
        return True
