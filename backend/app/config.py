"""FileVault configuration — Pydantic BaseSettings loaded from .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "FileVault"
    debug: bool = True
    environment: str = "development"
    log_level: str = "INFO"

    # Network
    host: str = "127.0.0.1"
    port: int = 8080
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
    ]

    # Auth — tokens are issued elsewhere, we only verify them
    secret_key: str = "change-me-in-prod"
    token_algorithm: str = "HS256"

    # Record store
    database_url: str = ""  # Any SQLAlchemy async URL; empty = SQLite at database_path
    database_path: str = "./data/filevault.db"
    max_db_connections: int = 5

    # Metadata cache
    cache_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/0"
    cache_socket_timeout_seconds: float = 2.0
    listing_cache_ttl_seconds: int = 300  # 5 minutes
    share_link_cache_ttl_seconds: int = 86400  # 24 hours

    # Uploads
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MiB
    upload_timeout_seconds: float = 300.0

    # Durable storage
    storage_backend: str = "local"  # local | s3
    storage_dir: str = "./data/blobs"
    public_base_url: str = "http://127.0.0.1:8080/blobs"
    serve_local_blobs: bool = True  # mount storage_dir at the public_base_url path
    s3_bucket_name: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint_url: str = ""  # MinIO / LocalStack
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # Orphaned blob reconciliation
    reconcile_enabled: bool = True
    reconcile_interval_seconds: int = 600
    orphan_grace_seconds: int = 3600

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_prefix="FILEVAULT_",
        extra="ignore",
    )

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite+aiosqlite:///{self.database_path}"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, str) and not value.startswith("["):
            return [o.strip() for o in value.split(",") if o.strip()]
        if isinstance(value, list):
            return value
        return ["http://localhost:5173"]

    @field_validator("cache_backend", "storage_backend")
    @classmethod
    def _lowercase_backend(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def _check_orphan_grace(self) -> "Settings":
        """An upload still in flight must never look orphaned."""
        if self.orphan_grace_seconds <= self.upload_timeout_seconds:
            raise ValueError("orphan_grace_seconds must exceed upload_timeout_seconds")
        return self

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Ensure data directories are absolute."""
        base = Path(__file__).resolve().parent.parent  # backend/
        for field in ("database_path", "storage_dir"):
            val = getattr(self, field)
            if not Path(val).is_absolute():
                setattr(self, field, str(base / val))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
