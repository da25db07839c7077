import asyncio
import logging

from .celery_app import celery

from personalization.core.config import settings
from personalization.core.errors import PersonalizationError
from personalization.services.engine import build_engine
from personalization.services.queue import InlineTaskQueue

logger = logging.getLogger("workers.tasks")


def _engine():
    # the worker applies interactions itself; never re-dispatch to celery
    return build_engine(settings, queue=InlineTaskQueue())


@celery.task(name="tasks.record_interaction")
def record_interaction(payload: dict) -> dict:
    """Apply one queued interaction to the user's personalization state."""

    async def _run() -> dict:
        engine = _engine()
        try:
            applied = await engine.recorder.record_payload(payload)
            return {"ok": True, "user_id": payload.get("user_id"), "applied": applied}
        except PersonalizationError as e:
            logger.warning("tasks: record_interaction rejected user=%s err=%s", payload.get("user_id"), e.code)
            return {"ok": False, "user_id": payload.get("user_id"), "error": e.code}
        finally:
            await engine.aclose()

    return asyncio.run(_run())


@celery.task(name="tasks.cleanup_user_state")
def cleanup_user_state(user_id: str) -> dict:
    """Prune expired anti-repetition entries, temporary blocks and stale dislike history for one user."""

    async def _run() -> dict:
        engine = _engine()
        try:
            counts = await engine.cleanup_user_state(user_id)
            return {"ok": True, "user_id": user_id, **counts}
        except PersonalizationError as e:
            return {"ok": False, "user_id": user_id, "error": e.code}
        finally:
            await engine.aclose()

    return asyncio.run(_run())


@celery.task(name="tasks.cleanup_expired_state")
def cleanup_expired_state() -> dict:
    async def _run() -> dict:
        engine = _engine()
        try:
            totals = await engine.cleanup_expired_state()
            return {"ok": True, **totals}
        except PersonalizationError as e:
            return {"ok": False, "error": e.code}
        finally:
            await engine.aclose()

    return asyncio.run(_run())
