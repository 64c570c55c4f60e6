"""SQLAlchemy ORM models for FileVault."""

from app.models.base import Base
from app.models.stored_file import StoredFile
from app.models.upload_journal import UploadJournalEntry

__all__ = [
    "Base",
    "StoredFile",
    "UploadJournalEntry",
]
