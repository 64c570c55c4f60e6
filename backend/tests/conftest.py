"""Test fixtures — temp SQLite record store, in-memory cache, fake storage, API client."""

from __future__ import annotations

import asyncio
import io

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine

from app.config import settings
from app.database import init_db
from app.exceptions import RecordStoreError
from app.main import create_app
from app.services import get_cache, get_metadata_service, get_upload_coordinator
from app.services.cache_backend import MemoryCache
from app.services.metadata_service import MetadataService
from app.services.record_store import RecordStore
from app.services.upload_coordinator import UploadCoordinator


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingRecordStore(RecordStore):
    """Record store that counts calls and can fail statements on demand."""

    def __init__(self, engine):
        super().__init__(engine)
        self.calls: list[tuple[str, str]] = []
        self.fail_on: str | None = None

    def _check(self, method: str, query: str) -> None:
        self.calls.append((method, query))
        if self.fail_on and query.startswith(self.fail_on):
            raise RecordStoreError("Record store write failed")

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    async def execute(self, query, params=None):
        self._check("execute", query)
        return await super().execute(query, params)

    async def query_rows(self, query, params=None):
        self._check("query_rows", query)
        return await super().query_rows(query, params)

    async def query_row(self, query, params=None):
        self._check("query_row", query)
        return await super().query_row(query, params)


class FakeStorage:
    """Blob storage double: returns a fixed locator or fails as configured."""

    def __init__(self, locator: str = "https://blob/abc123"):
        self.locator = locator
        self.transfers: list[tuple[str, bytes]] = []
        self.deleted: list[str] = []
        self.error: Exception | None = None
        self.hang = False

    async def transfer(self, stream, key: str) -> str:
        self.transfers.append((key, stream.read()))
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return self.locator

    async def delete(self, key: str) -> None:
        self.deleted.append(key)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite file per test, schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'filevault.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def record_store(engine):
    return CountingRecordStore(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def metadata_service(record_store, cache):
    return MetadataService(record_store, cache, listing_ttl_seconds=300, share_link_ttl_seconds=86400)


@pytest.fixture
def coordinator(record_store, storage):
    return UploadCoordinator(record_store, storage, max_file_size=10 * 1024 * 1024, transfer_timeout=5.0)


@pytest_asyncio.fixture
async def client(metadata_service, coordinator, cache):
    """Async test client wired to the per-test services."""
    app = create_app()
    app.dependency_overrides[get_metadata_service] = lambda: metadata_service
    app.dependency_overrides[get_upload_coordinator] = lambda: coordinator
    app.dependency_overrides[get_cache] = lambda: cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def make_token(user_id, secret: str = settings.secret_key) -> str:
    return jwt.encode({"user_id": user_id}, secret, algorithm=settings.token_algorithm)


def auth_headers(user_id=42) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def stream(data: bytes = b"x" * 2048) -> io.BytesIO:
    return io.BytesIO(data)


async def insert_file(
    record_store: RecordStore,
    owner_id: int,
    file_name: str,
    size: int = 100,
    upload_date: str = "2026-10-17 09:30:00",
    url: str | None = None,
) -> int:
    return await record_store.execute(
        "INSERT INTO files (user_id, file_name, file_size, upload_date, s3_url) "
        "VALUES (:user_id, :file_name, :file_size, :upload_date, :s3_url)",
        {
            "user_id": owner_id,
            "file_name": file_name,
            "file_size": size,
            "upload_date": upload_date,
            "s3_url": url or f"https://blob/{owner_id}/{file_name}",
        },
    )

