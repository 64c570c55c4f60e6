"""SQLAlchemy async engine (SQLite in WAL mode by default)."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.config import settings
from app.models.base import Base

logger = logging.getLogger(__name__)


def _configure_sqlite(dbapi_conn, _connection_record):
    """Apply SQLite PRAGMAs for concurrent readers during uploads."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str) -> AsyncEngine:
    """Create the process-wide engine; one pool shared by all requests."""
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.debug and settings.log_level == "DEBUG",
            pool_size=settings.max_db_connections,
            max_overflow=0,
        )
        event.listen(engine.sync_engine, "connect", _configure_sqlite)
        return engine
    return create_async_engine(
        url,
        pool_size=settings.max_db_connections,
        pool_pre_ping=True,
    )


if not settings.database_url:
    # Ensure DB directory exists
    Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)

engine = build_engine(settings.sqlalchemy_url)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables (dev/first-run). Production uses migrations."""
    # Import models so they register on Base.metadata
    import app.models  # noqa: F401

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified at %s", target.url.render_as_string(hide_password=True))
