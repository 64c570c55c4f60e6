"""File API routes — upload, cached listing, search, share links."""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile

from app.api.deps import get_current_principal
from app.schemas.files import (
    FileItem,
    FileListResponse,
    ProfileResponse,
    ShareLinkResponse,
    UploadResponse,
)
from app.services import get_metadata_service, get_upload_coordinator
from app.services.metadata_service import MetadataService
from app.services.upload_coordinator import UploadCoordinator

logger = logging.getLogger(__name__)
router = APIRouter()


def _declared_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    # Older multipart parsers don't record the part length
    stream = upload.file
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    user_id: int = Depends(get_current_principal),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
    metadata: MetadataService = Depends(get_metadata_service),
):
    """Upload one file; blocks until it is stored and recorded."""
    stored = await coordinator.upload(
        owner_id=user_id,
        file_name=file.filename,
        stream=file.file,
        declared_size=_declared_size(file),
    )
    await metadata.invalidate_listing(user_id)
    return UploadResponse(message="File uploaded successfully", file_url=stored.storage_locator)


@router.get("/files", response_model=FileListResponse)
async def list_files(
    user_id: int = Depends(get_current_principal),
    metadata: MetadataService = Depends(get_metadata_service),
):
    """All files of the caller (served from cache when warm)."""
    files = await metadata.list_files(user_id)
    return FileListResponse(files=[FileItem.from_metadata(f) for f in files])


@router.get("/files/search", response_model=FileListResponse)
async def search_files(
    name: Optional[str] = Query(None, description="Substring of the file name"),
    date: Optional[str] = Query(None, description="Upload day, YYYY-MM-DD (UTC)"),
    user_id: int = Depends(get_current_principal),
    metadata: MetadataService = Depends(get_metadata_service),
):
    files = await metadata.search_files(user_id, name=name, date=date)
    return FileListResponse(files=[FileItem.from_metadata(f) for f in files])


@router.get("/share/{file_id}", response_model=ShareLinkResponse)
async def share_file(
    file_id: str,
    user_id: int = Depends(get_current_principal),
    metadata: MetadataService = Depends(get_metadata_service),
):
    """Public URL of one of the caller's files."""
    locator = await metadata.resolve_share_link(file_id, user_id)
    return ShareLinkResponse(share_link=locator)


@router.get("/profile", response_model=ProfileResponse)
async def profile(user_id: int = Depends(get_current_principal)):
    return ProfileResponse(user_id=user_id)
