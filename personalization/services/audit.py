import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from personalization.models.models import InteractionAudit

logger = logging.getLogger("personalization.audit")


@dataclass
class InteractionEvent:
    user_id: str
    action: str
    applied: bool = True
    position: Optional[int] = None
    session_id: Optional[str] = None
    platform: Optional[str] = None
    tags: Dict[str, Any] = field(default_factory=dict)
    promoted: List[str] = field(default_factory=list)
    exploration_percentage: Optional[float] = None
    error: Optional[str] = None


class AuditSink(Protocol):
    async def write(self, event: InteractionEvent) -> None:
        ...


class LogAuditSink:
    async def write(self, event: InteractionEvent) -> None:
        logger.info(
            "audit: interaction user=%s action=%s position=%s applied=%s promoted=%s",
            event.user_id,
            event.action,
            event.position,
            event.applied,
            event.promoted,
        )


class MemoryAuditSink:
    def __init__(self) -> None:
        self.events: List[InteractionEvent] = []

    async def write(self, event: InteractionEvent) -> None:
        self.events.append(event)


class SqlAuditSink:
    """Persists events to ``interaction_audit``; failures are logged, never raised."""

    def __init__(self, sessionmaker: async_sessionmaker) -> None:
        self.sessionmaker = sessionmaker

    async def write(self, event: InteractionEvent) -> None:
        try:
            async with self.sessionmaker() as session:
                session.add(InteractionAudit(**asdict(event)))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("audit: write failed user=%s action=%s err=%s", event.user_id, event.action, e)


def get_audit_sink(config) -> AuditSink:
    backend = getattr(config, "AUDIT_BACKEND", "log")
    if backend == "sql":
        from personalization.core.db import make_engine, make_sessionmaker

        return SqlAuditSink(make_sessionmaker(make_engine(config.DATABASE_URL)))
    return LogAuditSink()
