"""System status schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    service: str = "filevault"
    cache_backend: str
    cache_reachable: bool = True
    storage_backend: str
