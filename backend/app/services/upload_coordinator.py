"""Upload coordination — background transfer, metadata write, first outcome wins."""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from datetime import datetime, timezone
from typing import BinaryIO

from app.exceptions import (
    EmptyFileError,
    FileTooLargeError,
    FileVaultError,
    PersistError,
    RecordStoreError,
    TransferError,
    TransferTimeoutError,
    ValidationError,
)
from app.schemas.files import FileMetadata
from app.services.blob_storage import BlobStorage
from app.services.record_store import RecordStore, to_db_timestamp
from app.services.upload_state import UploadState, UploadTracker

logger = logging.getLogger(__name__)


def clean_file_name(raw: str | None) -> str:
    """Strip any client-supplied directory part from a file name."""
    # "dir/" names no file at all
    name = (raw or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        raise ValidationError("File is required")
    return name


class UploadCoordinator:
    """Runs each upload as its own task and hands back exactly one outcome.

    The request handler awaits a single-use future; the spawned task is
    its only producer. Transfer always precedes the metadata write, and
    the first terminal message delivered wins. Every upload is journaled
    before its transfer starts so blobs left behind by a failed metadata
    write can be reconciled later.
    """

    def __init__(
        self,
        record_store: RecordStore,
        storage: BlobStorage,
        max_file_size: int = 10 * 1024 * 1024,
        transfer_timeout: float = 300.0,
    ):
        self._store = record_store
        self._storage = storage
        self._max_file_size = max_file_size
        self._transfer_timeout = transfer_timeout
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def upload(
        self,
        owner_id: int,
        file_name: str | None,
        stream: BinaryIO,
        declared_size: int | None,
    ) -> FileMetadata:
        """Transfer one file and persist its metadata; raises on any failure."""
        upload_id = uuid.uuid4().hex
        tracker = UploadTracker(upload_id)

        try:
            name = clean_file_name(file_name)
            if not declared_size or declared_size <= 0:
                raise EmptyFileError("File is empty")
            if declared_size > self._max_file_size:
                raise FileTooLargeError(declared_size, self._max_file_size)
        except ValidationError as exc:
            tracker.transition(UploadState.REJECTED)
            logger.info("Upload %s rejected for user %s: %s", upload_id, owner_id, exc.message)
            raise

        object_key = f"{owner_id}/{upload_id}/{name}"
        try:
            await self._journal_open(upload_id, owner_id, object_key, name, declared_size)
        except RecordStoreError:
            tracker.transition(UploadState.FAILED)
            raise

        tracker.transition(UploadState.TRANSFERRING)
        outcome: asyncio.Future[FileMetadata] = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(
            self._run(tracker, outcome, owner_id, name, declared_size, stream, object_key),
            name=f"upload-{upload_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_task_done, tracker=tracker, outcome=outcome))

        return await outcome

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight uploads (shutdown)."""
        if not self.in_flight:
            return
        logger.info("Waiting for %d in-flight upload(s)", self.in_flight)
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()

    async def _run(
        self,
        tracker: UploadTracker,
        outcome: asyncio.Future,
        owner_id: int,
        file_name: str,
        file_size: int,
        stream: BinaryIO,
        object_key: str,
    ) -> None:
        upload_id = tracker.upload_id
        try:
            locator = await asyncio.wait_for(
                self._storage.transfer(stream, object_key),
                timeout=self._transfer_timeout,
            )
        except asyncio.TimeoutError:
            error = TransferTimeoutError(
                f"error uploading file: no response from storage within {self._transfer_timeout:g}s"
            )
            await self._fail(tracker, outcome, error, "timed_out")
            return
        except TransferError as exc:
            await self._fail(tracker, outcome, exc, "transfer_failed")
            return
        except Exception as exc:
            logger.exception("Unexpected storage failure for upload %s", upload_id)
            await self._fail(tracker, outcome, TransferError(f"error uploading file: {exc}"), "transfer_failed")
            return

        tracker.transition(UploadState.PERSISTING)
        uploaded_at = datetime.now(timezone.utc).replace(microsecond=0)
        try:
            file_id = await self._store.execute(
                "INSERT INTO files (user_id, file_name, file_size, upload_date, s3_url) "
                "VALUES (:user_id, :file_name, :file_size, :upload_date, :s3_url)",
                {
                    "user_id": owner_id,
                    "file_name": file_name,
                    "file_size": file_size,
                    "upload_date": to_db_timestamp(uploaded_at),
                    "s3_url": locator,
                },
            )
        except RecordStoreError as exc:
            # The blob now exists without a row; the journal entry keeps track of it
            error = PersistError(f"error saving file metadata: {exc.message}")
            await self._fail(tracker, outcome, error, "persist_failed", locator=locator)
            return

        tracker.transition(UploadState.COMPLETED)
        logger.info("Upload %s completed: user=%s file_id=%s", upload_id, owner_id, file_id)
        self._deliver(
            outcome,
            upload_id,
            result=FileMetadata(
                id=str(file_id),
                owner_id=owner_id,
                file_name=file_name,
                file_size_bytes=file_size,
                upload_timestamp=uploaded_at,
                storage_locator=locator,
            ),
        )
        await self._journal_close(upload_id, "persisted", locator=locator)

    def _on_task_done(self, task: asyncio.Task, tracker: UploadTracker, outcome: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not tracker.is_terminal:
            tracker.transition(UploadState.FAILED)
        if outcome.done():
            return
        # The task died without delivering; the caller must still get an answer
        if task.cancelled():
            error = TransferError("error uploading file: upload was cancelled")
        else:
            error = TransferError(f"error uploading file: {task.exception()}")
        logger.error("Upload task %s ended without an outcome: %s", task.get_name(), error.message)
        outcome.set_exception(error)

    async def _fail(
        self,
        tracker: UploadTracker,
        outcome: asyncio.Future,
        error: FileVaultError,
        journal_status: str,
        locator: str | None = None,
    ) -> None:
        tracker.transition(UploadState.FAILED)
        logger.error("Upload %s failed (%s): %s", tracker.upload_id, journal_status, error.message)
        self._deliver(outcome, tracker.upload_id, error=error)
        await self._journal_close(tracker.upload_id, journal_status, locator=locator, error=error.message)

    @staticmethod
    def _deliver(
        outcome: asyncio.Future,
        upload_id: str,
        result: FileMetadata | None = None,
        error: FileVaultError | None = None,
    ) -> None:
        if outcome.done():
            logger.warning("Discarding late outcome for upload %s", upload_id)
            return
        if error is not None:
            outcome.set_exception(error)
        else:
            outcome.set_result(result)

    async def _journal_open(
        self, upload_id: str, owner_id: int, object_key: str, file_name: str, file_size: int
    ) -> None:
        await self._store.execute(
            "INSERT INTO upload_journal "
            "(id, user_id, object_key, file_name, file_size, status, created_at) "
            "VALUES (:id, :user_id, :object_key, :file_name, :file_size, 'transferring', :created_at)",
            {
                "id": upload_id,
                "user_id": owner_id,
                "object_key": object_key,
                "file_name": file_name,
                "file_size": file_size,
                "created_at": to_db_timestamp(datetime.now(timezone.utc)),
            },
        )

    async def _journal_close(
        self, upload_id: str, status: str, locator: str | None = None, error: str | None = None
    ) -> None:
        try:
            await self._store.execute(
                "UPDATE upload_journal SET status = :status, locator = :locator, "
                "error_msg = :error_msg, finished_at = :finished_at WHERE id = :id",
                {
                    "id": upload_id,
                    "status": status,
                    "locator": locator,
                    "error_msg": error,
                    "finished_at": to_db_timestamp(datetime.now(timezone.utc)),
                },
            )
        except RecordStoreError as exc:
            # Entry stays 'transferring'; the reconciler re-checks it after the grace period
            logger.warning("Could not update journal for upload %s: %s", upload_id, exc.message)
