"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends

from app import __version__
from app.config import settings
from app.exceptions import CacheError
from app.schemas.system import HealthResponse
from app.services import get_cache
from app.services.cache_backend import CacheBackend

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(cache: CacheBackend = Depends(get_cache)):
    """Liveness plus cache reachability; a cache outage only degrades reads."""
    try:
        cache_reachable = await cache.ping()
    except CacheError as exc:
        logger.warning("Health check: cache unreachable: %s", exc)
        cache_reachable = False

    return HealthResponse(
        status="ok" if cache_reachable else "degraded",
        version=__version__,
        cache_backend=settings.cache_backend,
        cache_reachable=cache_reachable,
        storage_backend=settings.storage_backend,
    )


@router.get("/ping")
async def ping():
    """Ultra-lightweight ping."""
    return {"status": "ok"}
