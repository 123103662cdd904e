"""
Redis Acknowledgement Store

Production implementation: one Redis hash per user, field = event id,
value = JSON ``{"state", "updated_at"}``. Hashes expire after
``ACK_TTL_SECONDS`` of inactivity.

Version: 1.0.0
"""

import json
import logging
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from teamorder.core.clock import ensure_utc
from teamorder.core.config import get_settings
from teamorder.core.errors import StoreUnavailableError
from teamorder.services.notifications.base import AckRecord, AckState, BaseAckStore

logger = logging.getLogger(__name__)
settings = get_settings()

KEY_PREFIX = "teamorder:acks:"


class RedisAckStore(BaseAckStore):
    """Acknowledgement store backed by Redis."""

    def __init__(self, url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.client = redis.from_url(url or settings.redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds or settings.ack_ttl_seconds
        logger.info("RedisAckStore initialized")

    @property
    def provider_name(self) -> str:
        return "redis"

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{KEY_PREFIX}{user_id}"

    @staticmethod
    def _decode(user_id: str, event_id: str, raw: str) -> AckRecord:
        data = json.loads(raw)
        return AckRecord(
            event_id=event_id,
            user_id=user_id,
            state=AckState(data["state"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    async def set_state(self, user_id: str, event_id: str, state: AckState, now: datetime) -> AckRecord:
        now = ensure_utc(now)
        payload = json.dumps({"state": state.value, "updated_at": now.isoformat()})
        key = self._key(user_id)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, event_id, payload)
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            logger.error(f"❌ Redis ack write failed for {user_id}: {e}")
            raise StoreUnavailableError("Acknowledgement store unavailable", detail=str(e)) from e
        return AckRecord(event_id=event_id, user_id=user_id, state=state, updated_at=now)

    async def get_state(self, user_id: str, event_id: str) -> Optional[AckRecord]:
        try:
            raw = await self.client.hget(self._key(user_id), event_id)
        except RedisError as e:
            logger.error(f"❌ Redis ack read failed for {user_id}: {e}")
            raise StoreUnavailableError("Acknowledgement store unavailable", detail=str(e)) from e
        if raw is None:
            return None
        return self._decode(user_id, event_id, raw)

    async def list_states(self, user_id: str) -> list[AckRecord]:
        try:
            entries = await self.client.hgetall(self._key(user_id))
        except RedisError as e:
            logger.error(f"❌ Redis ack read failed for {user_id}: {e}")
            raise StoreUnavailableError("Acknowledgement store unavailable", detail=str(e)) from e
        return [self._decode(user_id, event_id, raw) for event_id, raw in entries.items()]

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
