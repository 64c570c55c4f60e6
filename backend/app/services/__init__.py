"""Business logic services — singleton registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.config import settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from app.services.blob_storage import BlobStorage
    from app.services.cache_backend import CacheBackend
    from app.services.metadata_service import MetadataService
    from app.services.reconciler import OrphanReconciler
    from app.services.record_store import RecordStore
    from app.services.upload_coordinator import UploadCoordinator

logger = logging.getLogger(__name__)

_record_store: RecordStore | None = None
_cache: CacheBackend | None = None
_storage: BlobStorage | None = None
_metadata_service: MetadataService | None = None
_upload_coordinator: UploadCoordinator | None = None
_reconciler: OrphanReconciler | None = None


def build_cache() -> CacheBackend:
    from app.services.cache_backend import MemoryCache, RedisCache

    if settings.cache_backend == "redis":
        return RedisCache.from_url(settings.redis_url, settings.cache_socket_timeout_seconds)
    if settings.cache_backend == "memory":
        return MemoryCache()
    raise ValueError(f"Unknown cache backend: {settings.cache_backend!r}")


def build_storage() -> BlobStorage:
    from app.services.blob_storage import LocalBlobStorage, S3BlobStorage

    if settings.storage_backend == "s3":
        return S3BlobStorage(
            bucket_name=settings.s3_bucket_name,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url or None,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    if settings.storage_backend == "local":
        return LocalBlobStorage(settings.storage_dir, settings.public_base_url)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")


async def init_services(engine: AsyncEngine) -> None:
    """Create and wire up all service singletons (once per process)."""
    global _record_store, _cache, _storage, _metadata_service, _upload_coordinator, _reconciler

    from app.services.metadata_service import MetadataService
    from app.services.reconciler import OrphanReconciler
    from app.services.record_store import RecordStore
    from app.services.upload_coordinator import UploadCoordinator

    _record_store = RecordStore(engine)
    _cache = build_cache()
    _storage = build_storage()
    logger.info(
        "Adapters ready (cache=%s, storage=%s)",
        settings.cache_backend, settings.storage_backend,
    )

    _metadata_service = MetadataService(
        _record_store,
        _cache,
        listing_ttl_seconds=settings.listing_cache_ttl_seconds,
        share_link_ttl_seconds=settings.share_link_cache_ttl_seconds,
    )
    _upload_coordinator = UploadCoordinator(
        _record_store,
        _storage,
        max_file_size=settings.max_file_size_bytes,
        transfer_timeout=settings.upload_timeout_seconds,
    )

    if settings.reconcile_enabled:
        _reconciler = OrphanReconciler(
            _record_store,
            _storage,
            interval_seconds=settings.reconcile_interval_seconds,
            grace_seconds=settings.orphan_grace_seconds,
        )
        _reconciler.start()
    else:
        logger.warning("Orphan reconciliation disabled (FILEVAULT_RECONCILE_ENABLED=false)")


async def shutdown_services() -> None:
    """Stop the reconciler, let uploads finish, close the cache."""
    global _reconciler, _upload_coordinator, _cache
    if _reconciler:
        await _reconciler.stop()
        _reconciler = None
    if _upload_coordinator:
        await _upload_coordinator.drain()
        _upload_coordinator = None
    if _cache:
        await _cache.close()
        _cache = None


def get_metadata_service() -> MetadataService:
    if _metadata_service is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _metadata_service


def get_cache() -> CacheBackend:
    if _cache is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _cache


def get_upload_coordinator() -> UploadCoordinator:
    if _upload_coordinator is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _upload_coordinator
