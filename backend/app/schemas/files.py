"""File schemas — domain metadata plus the JSON layouts exposed to clients."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_serializer


class FileMetadata(BaseModel):
    """One stored file. Created only after the blob reached durable storage."""
    id: str
    owner_id: int
    file_name: str
    file_size_bytes: int = Field(gt=0)
    upload_timestamp: datetime
    storage_locator: str


class FileItem(BaseModel):
    """File metadata for listing."""
    file_id: str
    file_name: str
    file_size: int
    upload_date: datetime
    s3_url: str

    @field_serializer("upload_date")
    def _rfc3339(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    @classmethod
    def from_metadata(cls, meta: FileMetadata) -> "FileItem":
        return cls(
            file_id=meta.id,
            file_name=meta.file_name,
            file_size=meta.file_size_bytes,
            upload_date=meta.upload_timestamp,
            s3_url=meta.storage_locator,
        )


class FileListResponse(BaseModel):
    files: list[FileItem]


class ShareLinkResponse(BaseModel):
    share_link: str


class UploadResponse(BaseModel):
    message: str
    file_url: str


class ProfileResponse(BaseModel):
    user_id: int
    message: str = "Welcome to your profile"
