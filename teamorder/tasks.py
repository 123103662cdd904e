"""
Celery Tasks
Background deadline sweeps. Each run opens its own engine so the async
driver is bound to the event loop ``asyncio.run`` creates for it.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from teamorder.celery_worker import celery_app
from teamorder.core.config import get_settings
from teamorder.core.errors import OrderSessionError
from teamorder.database import build_engine
from teamorder.services.identity import get_identity_service
from teamorder.services.sessions import OrderSessionService
from teamorder.services.store import get_session_store

logger = logging.getLogger(__name__)
settings = get_settings()


async def _with_service(action, database_url: Optional[str] = None):
    engine = build_engine(database_url or settings.database_url)
    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as db:
            service = OrderSessionService(
                store=get_session_store(db),
                identity=get_identity_service(db),
                settings=settings,
            )
            return await action(service)
    finally:
        await engine.dispose()


async def run_expired_sweep(database_url: Optional[str] = None) -> list[dict[str, Any]]:
    async def action(service: OrderSessionService):
        return [r.to_dict() for r in await service.sweep_expired_sessions()]
    return await _with_service(action, database_url)


async def run_session_sweep(session_id: str, database_url: Optional[str] = None) -> dict[str, Any]:
    async def action(service: OrderSessionService):
        return (await service.sweep_deadline(session_id)).to_dict()
    return await _with_service(action, database_url)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
)
def sweep_expired_sessions(self) -> dict:
    """
    Sweep every open session whose deadline has passed.
    Scheduled by Celery beat every SWEEP_INTERVAL_SECONDS.

    Returns:
        dict: Per-session sweep results
    """
    task_id = self.request.id
    start_time = time.time()

    try:
        results = asyncio.run(run_expired_sweep())
    except OrderSessionError as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: sweep failed after {elapsed}s - {e.message}")
        if e.retryable:
            raise self.retry(exc=e)
        return {'success': False, 'error': e.message, 'code': e.code, 'task_id': task_id}

    elapsed = round(time.time() - start_time, 3)
    closed = sum(1 for r in results if r['session_closed'])
    auto_passed = sum(r['auto_passed_count'] for r in results)
    if results:
        logger.info(
            f"✅ Task {task_id}: swept {len(results)} session(s), "
            f"{auto_passed} auto-passed, {closed} closed in {elapsed}s"
        )
    return {
        'success': True,
        'task_id': task_id,
        'sessions': results,
        'processing_time_seconds': elapsed,
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
)
def sweep_session(self, session_id: str) -> dict:
    """Sweep one session on demand."""
    task_id = self.request.id
    try:
        result = asyncio.run(run_session_sweep(session_id))
    except OrderSessionError as e:
        logger.error(f"❌ Task {task_id}: sweep of {session_id} failed - {e.message}")
        if e.retryable:
            raise self.retry(exc=e)
        return {'success': False, 'error': e.message, 'code': e.code, 'task_id': task_id}

    result['task_id'] = task_id
    result['success'] = not result['failures']
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
