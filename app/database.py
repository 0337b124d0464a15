from typing import AsyncGenerator, Tuple

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.config import Settings


def create_engine_and_sessionmaker(settings: Settings) -> Tuple[AsyncEngine, sessionmaker]:
    engine_kwargs = {"echo": settings.DB_ECHO, "future": True}
    if settings.DB_URL.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in settings.DB_URL:
            # in-memory sqlite only exists on a single shared connection
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["connect_args"] = {
            "server_settings": {"application_name": settings.APP_NAME}
        }

    async_engine = create_async_engine(settings.DB_URL, **engine_kwargs)

    session_factory = sessionmaker(
        bind=async_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )
    return async_engine, session_factory


async def init_db(async_engine: AsyncEngine) -> None:
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    session_factory = request.app.state.context.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            raise e
        finally:
            await session.close()
