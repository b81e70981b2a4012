# skillforge/utils/db.py
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from skillforge.utils.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Creates an async engine. SQLite connections get foreign key enforcement
    and are not pooled, so the engine can be driven from more than one event loop.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs = {"echo": echo}
    if is_sqlite:
        kwargs["poolclass"] = NullPool
    async_engine = create_async_engine(database_url, **kwargs)

    if is_sqlite:
        @event.listens_for(async_engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return async_engine


def build_session_factory(async_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Process-wide engine and session factory, built from settings
engine = build_engine(settings.database_url, echo=settings.sql_echo)
AsyncSessionLocal = build_session_factory(engine)
