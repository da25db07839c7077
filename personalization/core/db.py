from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from personalization.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str | None = None, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url or settings.DATABASE_URL, echo=echo, pool_pre_ping=True)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
