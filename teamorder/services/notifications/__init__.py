"""
Notification Services

The change-notification engine, its per-observer registry, and the
acknowledgement store (Mock or Redis based on ENV_MODE).

Version: 1.0.0
"""

import logging
from functools import lru_cache

from teamorder.core.config import get_settings
from teamorder.services.notifications.base import AckRecord, AckState, BaseAckStore
from teamorder.services.notifications.engine import NotificationEngine, ObserverState
from teamorder.services.notifications.events import (
    NotificationEvent,
    NotificationType,
    ObserverRole,
    make_event_id,
)
from teamorder.services.notifications.mock import MockAckStore
from teamorder.services.notifications.registry import ObserverRegistry

logger = logging.getLogger(__name__)


@lru_cache()
def get_ack_store() -> BaseAckStore:
    """Get the configured acknowledgement store."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Ack Store: Using MockAckStore (development mode)")
        return MockAckStore()
    else:
        from teamorder.services.notifications.real import RedisAckStore
        logger.info(f"Ack Store: Using RedisAckStore ({settings.env_mode.value} mode)")
        return RedisAckStore()


def reset_ack_store() -> None:
    """Clear the cached store instance."""
    get_ack_store.cache_clear()


@lru_cache()
def get_observer_registry() -> ObserverRegistry:
    """Process-wide observer registry."""
    return ObserverRegistry()


def reset_observer_registry() -> None:
    get_observer_registry.cache_clear()


__all__ = [
    "get_ack_store",
    "reset_ack_store",
    "get_observer_registry",
    "reset_observer_registry",
    "AckRecord",
    "AckState",
    "BaseAckStore",
    "MockAckStore",
    "NotificationEngine",
    "NotificationEvent",
    "NotificationType",
    "ObserverRegistry",
    "ObserverRole",
    "ObserverState",
    "make_event_id",
]
