"""Background submission for interaction recording.

Handlers are registered by task name; the Celery backend routes the same names
to ``tasks.<name>`` on the worker side.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Protocol, Set

logger = logging.getLogger("personalization.queue")

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class TaskQueue(Protocol):
    def register(self, name: str, handler: Handler) -> None:
        ...

    async def submit(self, name: str, payload: Mapping[str, Any]) -> None:
        ...


class _HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def _handler(self, name: str) -> Handler:
        try:
            return self._handlers[name]
        except KeyError:
            raise LookupError(f"no handler registered for task {name!r}") from None


class InlineTaskQueue(_HandlerRegistry):
    """Runs the handler before ``submit`` returns; used in tests."""

    async def submit(self, name: str, payload: Mapping[str, Any]) -> None:
        await self._handler(name)(payload)


class AsyncioTaskQueue(_HandlerRegistry):
    def __init__(self) -> None:
        super().__init__()
        self._tasks: Set[asyncio.Task] = set()

    async def submit(self, name: str, payload: Mapping[str, Any]) -> None:
        task = asyncio.create_task(self._handler(name)(payload))
        self._tasks.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("queue: background task failed err=%r", exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class CeleryTaskQueue:
    def __init__(self, celery_app) -> None:
        self.celery = celery_app

    def register(self, name: str, handler: Handler) -> None:
        """Handlers run in the worker; only check that the task is routed there."""
        task = f"tasks.{name}"
        if task not in (self.celery.conf.task_routes or {}):
            raise LookupError(f"celery has no route for task {task!r}")

    async def submit(self, name: str, payload: Mapping[str, Any]) -> None:
        self.celery.send_task(f"tasks.{name}", kwargs={"payload": dict(payload)})
        logger.debug("queue: sent task=tasks.%s user=%s", name, payload.get("user_id"))


def get_task_queue(config) -> TaskQueue:
    backend = getattr(config, "TASK_BACKEND", "asyncio")
    if backend == "celery":
        from workers.celery_app import celery

        return CeleryTaskQueue(celery)
    if backend == "inline":
        return InlineTaskQueue()
    return AsyncioTaskQueue()
