"""Cache-aside reads of file metadata: cache first, record store on miss."""

from __future__ import annotations

import json
import logging
from datetime import date as date_type
from datetime import datetime, timedelta
from typing import Any

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from app.exceptions import CacheError, DeserializationError, ShareLinkNotFoundError, ValidationError
from app.schemas.files import FileMetadata
from app.services.cache_backend import CacheBackend
from app.services.record_store import RecordStore, from_db_timestamp
from app.utils.principal import INT64_MAX

logger = logging.getLogger(__name__)

_LISTING = TypeAdapter(list[FileMetadata])

_FILE_COLUMNS = "id, user_id, file_name, file_size, upload_date, s3_url"
# Newest first; id breaks ties between uploads finishing in the same second
_LISTING_ORDER = "ORDER BY upload_date DESC, id DESC"


def listing_cache_key(owner_id: int) -> str:
    return f"files_metadata:{owner_id}"


def share_link_cache_key(file_id: str, owner_id: int) -> str:
    return f"file_share_link:{owner_id}:{file_id}"


def _row_to_metadata(row: dict[str, Any]) -> FileMetadata:
    return FileMetadata(
        id=str(row["id"]),
        owner_id=row["user_id"],
        file_name=row["file_name"],
        file_size_bytes=row["file_size"],
        upload_timestamp=from_db_timestamp(row["upload_date"]),
        storage_locator=row["s3_url"],
    )


def _decode_share_link(raw: str) -> str:
    locator = json.loads(raw)["storage_locator"]
    if not isinstance(locator, str) or not locator:
        raise ValueError(f"bad storage_locator: {locator!r}")
    return locator


def _escape_like(term: str) -> str:
    return term.replace("!", "!!").replace("%", "!%").replace("_", "!_")


class MetadataService:
    """Serves file listings and share links with cache-aside consistency.

    The record store is authoritative. A cache miss always falls through
    to it; a cache failure is logged and the freshly read value is not
    written back, so a transient outage never gets cached.
    """

    def __init__(
        self,
        record_store: RecordStore,
        cache: CacheBackend,
        listing_ttl_seconds: int = 300,
        share_link_ttl_seconds: int = 86400,
    ):
        self._store = record_store
        self._cache = cache
        self._listing_ttl = listing_ttl_seconds
        self._share_link_ttl = share_link_ttl_seconds

    async def list_files(self, owner_id: int) -> list[FileMetadata]:
        key = listing_cache_key(owner_id)
        cached, cache_ok = await self._cache_get(key)
        if cached is not None:
            try:
                return _LISTING.validate_json(cached)
            except PydanticValidationError as exc:
                await self._evict_corrupt(key, exc)
                raise DeserializationError("Failed to parse metadata") from exc

        rows = await self._store.query_rows(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE user_id = :owner_id {_LISTING_ORDER}",
            {"owner_id": owner_id},
        )
        files = [_row_to_metadata(row) for row in rows]

        # Empty listings are cached too: "no files" is a real answer
        if cache_ok:
            await self._cache_set(key, _LISTING.dump_json(files).decode(), self._listing_ttl)
        return files

    async def resolve_share_link(self, file_id: str, owner_id: int) -> str:
        if not (file_id.isascii() and file_id.isdigit()) or int(file_id) > INT64_MAX:
            raise ShareLinkNotFoundError("File not found")

        key = share_link_cache_key(file_id, owner_id)
        cached, cache_ok = await self._cache_get(key)
        if cached is not None:
            try:
                return _decode_share_link(cached)
            except (ValueError, TypeError, KeyError) as exc:
                await self._evict_corrupt(key, exc)
                raise DeserializationError("Failed to parse cached share link") from exc

        row = await self._store.query_row(
            "SELECT s3_url FROM files WHERE id = :file_id AND user_id = :owner_id",
            {"file_id": int(file_id), "owner_id": owner_id},
        )
        if row is None:
            # Never cached: a later legitimate match must not be masked
            raise ShareLinkNotFoundError("File not found")

        locator = row["s3_url"]
        if cache_ok:
            await self._cache_set(key, json.dumps({"storage_locator": locator}), self._share_link_ttl)
        return locator

    async def search_files(
        self,
        owner_id: int,
        name: str | None = None,
        date: str | None = None,
    ) -> list[FileMetadata]:
        """Filtered lookup straight against the record store; never cached."""
        query = f"SELECT {_FILE_COLUMNS} FROM files WHERE user_id = :owner_id"
        params: dict[str, Any] = {"owner_id": owner_id}

        if name:
            query += " AND LOWER(file_name) LIKE LOWER(:name) ESCAPE '!'"
            params["name"] = f"%{_escape_like(name)}%"
        if date:
            try:
                day = datetime.strptime(date, "%Y-%m-%d")
            except ValueError as exc:
                raise ValidationError("Invalid date, expected YYYY-MM-DD") from exc
            query += " AND upload_date >= :day_start"
            params["day_start"] = day
            if day.date() < date_type.max:
                query += " AND upload_date < :day_end"
                params["day_end"] = day + timedelta(days=1)

        rows = await self._store.query_rows(f"{query} {_LISTING_ORDER}", params)
        return [_row_to_metadata(row) for row in rows]

    async def invalidate_listing(self, owner_id: int) -> None:
        """Drop an owner's cached listing after their files changed."""
        key = listing_cache_key(owner_id)
        try:
            await self._cache.delete(key)
        except CacheError as exc:
            logger.warning("Could not invalidate %s: %s", key, exc)

    async def _cache_get(self, key: str) -> tuple[str | None, bool]:
        try:
            return await self._cache.get(key), True
        except CacheError as exc:
            logger.warning("Cache unavailable, reading %s from record store: %s", key, exc)
            return None, False

    async def _cache_set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._cache.set(key, value, ttl_seconds)
        except CacheError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def _evict_corrupt(self, key: str, exc: Exception) -> None:
        logger.error("Corrupted cache entry %s: %s", key, exc)
        try:
            await self._cache.delete(key)
        except CacheError as delete_exc:
            logger.warning("Could not evict %s: %s", key, delete_exc)
