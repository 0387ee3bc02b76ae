"""Async engine, session factory and store failure classification."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from barbershop_api.core.settings import settings


class StoreUnavailableError(RuntimeError):
    """Raised when the data store cannot be read from or written to."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"Store unavailable during {operation}: {detail}")
        self.operation = operation
        self.detail = detail


def _connect_args(database_url: str) -> dict[str, Any]:
    if database_url.startswith("postgresql+asyncpg"):
        return {
            "timeout": settings.database_timeout_seconds,
            "command_timeout": settings.database_timeout_seconds,
        }
    if "+aiosqlite" in database_url:
        return {"timeout": settings.database_timeout_seconds}
    return {}


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True, "connect_args": _connect_args(database_url)}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=8, max_overflow=10, pool_timeout=settings.database_pool_timeout_seconds)
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

SessionFactory = Union[Callable[[], AsyncSession], Callable[[], Awaitable[AsyncSession]]]


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request (background tasks)."""

    return async_session


async def resolve_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


@asynccontextmanager
async def store_guard(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Translate driver/ORM failures and timeouts into ``StoreUnavailableError``.

    The session is rolled back so the caller can keep using it after the error
    has been reported.
    """

    try:
        yield
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
        logger.error("Store operation failed", operation=operation, error=str(exc))
        try:
            await session.rollback()
        except SQLAlchemyError:  # pragma: no cover - connection already gone
            pass
        raise StoreUnavailableError(operation, str(exc)) from exc


__all__ = [
    "SessionFactory",
    "StoreUnavailableError",
    "async_session",
    "engine",
    "get_session",
    "get_session_factory",
    "resolve_session",
    "store_guard",
]
