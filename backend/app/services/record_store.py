"""Record store adapter — parameterized statements over the shared async engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.dialects import sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.exceptions import RecordStoreError

logger = logging.getLogger(__name__)

# SQLite keeps whole-second "YYYY-MM-DD HH:MM:SS" text so range filters compare lexically;
# other dialects bind native timestamps
DB_TIMESTAMP = DateTime().with_variant(
    sqlite.DATETIME(
        storage_format="%(year)04d-%(month)02d-%(day)02d %(hour)02d:%(minute)02d:%(second)02d"
    ),
    "sqlite",
)


def to_db_timestamp(value: datetime) -> datetime:
    """Normalize a datetime to the naive, whole-second UTC value rows store."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def from_db_timestamp(value: datetime | str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _statement(query: str, params: Mapping[str, Any] | None):
    """Build a text() statement; datetime parameters bind as DB_TIMESTAMP."""
    values = {
        key: to_db_timestamp(value) if isinstance(value, datetime) else value
        for key, value in (params or {}).items()
    }
    stmt = text(query)
    typed = [bindparam(key, type_=DB_TIMESTAMP) for key, value in values.items() if isinstance(value, datetime)]
    if typed:
        stmt = stmt.bindparams(*typed)
    return stmt, values


class RecordStore:
    """Executes queries; owns no business logic.

    Every call checks out one connection for one statement and returns
    it to the pool on all exit paths.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def execute(self, query: str, params: Mapping[str, Any] | None = None) -> int | None:
        """Run a write statement, returning the inserted row id if any."""
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(*_statement(query, params))
                return result.lastrowid
        except SQLAlchemyError as exc:
            logger.error("Record store write failed: %s", exc)
            raise RecordStoreError("Record store write failed") from exc

    async def query_rows(self, query: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a read statement and return every row as a dict."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(*_statement(query, params))
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            logger.error("Record store query failed: %s", exc)
            raise RecordStoreError("Record store query failed") from exc

    async def query_row(self, query: str, params: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """Run a read statement and return the first row, or None."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(*_statement(query, params))
                row = result.mappings().first()
                return dict(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("Record store query failed: %s", exc)
            raise RecordStoreError("Record store query failed") from exc
