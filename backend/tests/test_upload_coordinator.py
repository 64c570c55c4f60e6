"""Tests for UploadCoordinator — size ceiling, outcomes, journal, deadlines."""

import asyncio

import pytest

from conftest import insert_file, stream
from app.exceptions import (
    EmptyFileError,
    FileTooLargeError,
    PersistError,
    RecordStoreError,
    TransferError,
    TransferTimeoutError,
    ValidationError,
)
from app.services.upload_coordinator import UploadCoordinator, clean_file_name
from app.services.upload_state import UploadState, UploadTracker

MAX = 10 * 1024 * 1024


async def _journal(record_store):
    return await record_store.query_rows("SELECT * FROM upload_journal")


class TestRejection:
    @pytest.mark.asyncio
    async def test_one_byte_over_ceiling_never_reaches_storage(self, coordinator, storage, record_store):
        with pytest.raises(FileTooLargeError) as exc_info:
            await coordinator.upload(42, "big.bin", stream(), MAX + 1)

        assert exc_info.value.status_code == 400
        assert "10 MB" in exc_info.value.message
        assert storage.transfers == []
        assert record_store.calls == []

    @pytest.mark.asyncio
    async def test_exactly_at_ceiling_accepted(self, coordinator, storage):
        result = await coordinator.upload(42, "edge.bin", stream(b"x"), MAX)
        assert result.file_size_bytes == MAX
        assert len(storage.transfers) == 1

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, coordinator, storage):
        with pytest.raises(EmptyFileError):
            await coordinator.upload(42, "empty.txt", stream(b""), 0)
        assert storage.transfers == []

    @pytest.mark.asyncio
    async def test_missing_name_rejected(self, coordinator, storage):
        with pytest.raises(ValidationError):
            await coordinator.upload(42, "", stream(), 10)
        assert storage.transfers == []


class TestCompleted:
    @pytest.mark.asyncio
    async def test_report_scenario(self, coordinator, storage, record_store, metadata_service):
        # Push the next rowid to 901
        await insert_file(record_store, 1, "seed.txt")
        await record_store.execute("UPDATE files SET id = 900 WHERE user_id = 1")

        result = await coordinator.upload(42, "report.pdf", stream(), 2048)

        assert result.id == "901"
        assert result.storage_locator == "https://blob/abc123"
        assert result.owner_id == 42

        files = await metadata_service.list_files(42)
        assert len(files) == 1
        assert files[0].id == "901"
        assert files[0].file_name == "report.pdf"
        assert files[0].file_size_bytes == 2048
        assert files[0].upload_timestamp == result.upload_timestamp

    @pytest.mark.asyncio
    async def test_object_key_is_owner_scoped_and_unique(self, coordinator, storage):
        await coordinator.upload(42, "../../etc/passwd", stream(), 10)
        await coordinator.upload(42, "../../etc/passwd", stream(), 10)

        (key1, _), (key2, _) = storage.transfers
        assert key1.startswith("42/") and key1.endswith("/passwd")
        assert key1 != key2
        assert ".." not in key1

    @pytest.mark.asyncio
    async def test_journal_marked_persisted(self, coordinator, record_store):
        await coordinator.upload(42, "a.txt", stream(), 10)
        await coordinator.drain()

        (entry,) = await _journal(record_store)
        assert entry["status"] == "persisted"
        assert entry["locator"] == "https://blob/abc123"
        assert entry["finished_at"] is not None

    @pytest.mark.asyncio
    async def test_concurrent_uploads_independent(self, record_store, storage):
        coordinator = UploadCoordinator(record_store, storage, max_file_size=MAX, transfer_timeout=5.0)
        results = await asyncio.gather(
            *(coordinator.upload(42, f"f{i}.txt", stream(), 10) for i in range(5))
        )
        assert len({r.id for r in results}) == 5
        assert len(storage.transfers) == 5


class TestFailures:
    @pytest.mark.asyncio
    async def test_transfer_failure_writes_no_metadata(self, coordinator, storage, record_store):
        storage.error = TransferError("error uploading file to S3: AccessDenied")

        with pytest.raises(TransferError) as exc_info:
            await coordinator.upload(42, "a.txt", stream(), 10)

        assert exc_info.value.status_code == 502
        assert await record_store.query_rows("SELECT * FROM files") == []
        await coordinator.drain()
        (entry,) = await _journal(record_store)
        assert entry["status"] == "transfer_failed"

    @pytest.mark.asyncio
    async def test_unexpected_storage_exception_wrapped(self, coordinator, storage):
        storage.error = RuntimeError("socket closed")
        with pytest.raises(TransferError, match="socket closed"):
            await coordinator.upload(42, "a.txt", stream(), 10)

    @pytest.mark.asyncio
    async def test_persist_failure_after_transfer(self, coordinator, storage, record_store):
        record_store.fail_on = "INSERT INTO files"

        with pytest.raises(PersistError) as exc_info:
            await coordinator.upload(42, "a.txt", stream(), 10)

        assert exc_info.value.status_code == 500
        assert "error saving file metadata" in exc_info.value.message
        assert len(storage.transfers) == 1  # blob exists
        await coordinator.drain()
        (entry,) = await _journal(record_store)
        assert entry["status"] == "persist_failed"
        assert entry["locator"] == "https://blob/abc123"

    @pytest.mark.asyncio
    async def test_journal_failure_aborts_before_transfer(self, coordinator, storage, record_store):
        record_store.fail_on = "INSERT INTO upload_journal"

        with pytest.raises(RecordStoreError):
            await coordinator.upload(42, "a.txt", stream(), 10)
        assert storage.transfers == []

    @pytest.mark.asyncio
    async def test_hanging_transfer_times_out(self, record_store, storage):
        storage.hang = True
        coordinator = UploadCoordinator(record_store, storage, max_file_size=MAX, transfer_timeout=0.05)

        with pytest.raises(TransferTimeoutError) as exc_info:
            await coordinator.upload(42, "a.txt", stream(), 10)

        assert exc_info.value.status_code == 504
        await coordinator.drain()
        (entry,) = await _journal(record_store)
        assert entry["status"] == "timed_out"
        assert await record_store.query_rows("SELECT * FROM files") == []


class TestFirstOutcomeWins:
    @pytest.mark.asyncio
    async def test_late_outcome_discarded(self):
        loop = asyncio.get_running_loop()
        outcome = loop.create_future()

        UploadCoordinator._deliver(outcome, "u1", error=PersistError("first"))
        UploadCoordinator._deliver(outcome, "u1", error=TransferError("second"))

        with pytest.raises(PersistError, match="first"):
            await outcome

    @pytest.mark.asyncio
    async def test_task_crash_still_answers_caller(self, coordinator, monkeypatch):
        async def boom(*args, **kwargs):
            raise KeyError("tracker exploded")

        monkeypatch.setattr(coordinator, "_run", boom)

        with pytest.raises(TransferError, match="tracker exploded"):
            await coordinator.upload(42, "a.txt", stream(), 10)
        assert coordinator.in_flight == 0

    @pytest.mark.asyncio
    async def test_task_crash_leaves_tracker_failed(self, coordinator, monkeypatch):
        trackers = []

        class RecordingTracker(UploadTracker):
            def __init__(self, upload_id):
                super().__init__(upload_id)
                trackers.append(self)

        async def boom(*args, **kwargs):
            raise KeyError("tracker exploded")

        monkeypatch.setattr("app.services.upload_coordinator.UploadTracker", RecordingTracker)
        monkeypatch.setattr(coordinator, "_run", boom)

        with pytest.raises(TransferError):
            await coordinator.upload(42, "a.txt", stream(), 10)
        (tracker,) = trackers
        assert tracker.state == UploadState.FAILED
        assert tracker.is_terminal


class TestCleanFileName:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("report.pdf", "report.pdf"),
            ("dir/sub/report.pdf", "report.pdf"),
            ("C:\\Users\\me\\report.pdf", "report.pdf"),
            ("  spaced.txt ", "spaced.txt"),
        ],
    )
    def test_strips_directories(self, raw, expected):
        assert clean_file_name(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "..", "dir/", "dir/sub/", "C:\\Users\\"])
    def test_rejects_empty(self, raw):
        with pytest.raises(ValidationError):
            clean_file_name(raw)
