import logging

import pytest
from sqlalchemy.exc import OperationalError

from personalization.models.models import InteractionAudit
from personalization.services.audit import InteractionEvent, LogAuditSink, SqlAuditSink
from personalization.services.queue import AsyncioTaskQueue, CeleryTaskQueue, InlineTaskQueue


async def test_inline_queue_runs_handler():
    seen = []

    async def handler(payload):
        seen.append(payload["user_id"])

    queue = InlineTaskQueue()
    queue.register("record_interaction", handler)
    await queue.submit("record_interaction", {"user_id": "u1"})
    assert seen == ["u1"]


async def test_unknown_task_rejected():
    with pytest.raises(LookupError):
        await InlineTaskQueue().submit("missing", {})


async def test_asyncio_queue_logs_failures(caplog):
    async def boom(payload):
        raise RuntimeError("handler exploded")

    queue = AsyncioTaskQueue()
    queue.register("record_interaction", boom)
    await queue.submit("record_interaction", {"user_id": "u1"})
    await queue.drain()
    assert queue.pending == 0
    assert "background task failed" in caplog.text


async def test_celery_queue_routes_by_name():
    class FakeCelery:
        def __init__(self):
            self.sent = []

        def send_task(self, name, kwargs=None):
            self.sent.append((name, kwargs))

    app = FakeCelery()
    await CeleryTaskQueue(app).submit("record_interaction", {"user_id": "u1", "action": "LIKE"})
    assert app.sent == [("tasks.record_interaction", {"payload": {"user_id": "u1", "action": "LIKE"}})]


def test_celery_queue_register_requires_route():
    from workers.celery_app import celery

    async def handler(payload):
        return None

    queue = CeleryTaskQueue(celery)
    queue.register("record_interaction", handler)
    with pytest.raises(LookupError):
        queue.register("not_a_task", handler)


async def test_log_sink(caplog):
    with caplog.at_level(logging.INFO, logger="personalization.audit"):
        await LogAuditSink().write(InteractionEvent(user_id="u1", action="LIKE", position=3))
    assert "user=u1 action=LIKE position=3" in caplog.text


class FakeSession:
    def __init__(self, fail=False):
        self.added = []
        self.committed = False
        self.fail = fail

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def add(self, obj):
        self.added.append(obj)

    async def commit(self):
        if self.fail:
            raise OperationalError("INSERT", {}, Exception("db down"))
        self.committed = True


async def test_sql_sink_writes_model():
    session = FakeSession()
    sink = SqlAuditSink(lambda: session)
    await sink.write(InteractionEvent(user_id="u1", action="DISLIKE", promoted=["styles:boho"]))
    [row] = session.added
    assert isinstance(row, InteractionAudit)
    assert (row.user_id, row.action, row.promoted) == ("u1", "DISLIKE", ["styles:boho"])
    assert session.committed


async def test_sql_sink_failure_is_logged_not_raised(caplog):
    sink = SqlAuditSink(lambda: FakeSession(fail=True))
    await sink.write(InteractionEvent(user_id="u1", action="LIKE"))
    assert "audit: write failed" in caplog.text
