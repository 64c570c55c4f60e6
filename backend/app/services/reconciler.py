"""APScheduler job that removes blobs whose metadata write never happened."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from urllib.parse import quote

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.exceptions import RecordStoreError, TransferError
from app.services.record_store import to_db_timestamp

if TYPE_CHECKING:
    from app.services.blob_storage import BlobStorage
    from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)

# Journal states that may have left a blob behind without a files row
UNSETTLED_STATUSES = ("transferring", "transfer_failed", "timed_out", "persist_failed")


class OrphanReconciler:
    """Periodically settles upload journal entries that never reached 'persisted'.

    An entry whose locator does have a files row is marked persisted
    (its journal update was lost). Otherwise the blob is deleted and the
    entry marked reconciled, so every durable object ends up with a row
    or gets removed.
    """

    def __init__(
        self,
        record_store: RecordStore,
        storage: BlobStorage,
        interval_seconds: int = 600,
        grace_seconds: int = 3600,
    ):
        self._store = record_store
        self._storage = storage
        self._interval = interval_seconds
        self._grace = grace_seconds
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    def start(self) -> None:
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self._interval,
            id="reconcile_orphans",
            name="Delete blobs without metadata",
        )
        self._scheduler.start()
        logger.info(
            "Orphan reconciler started — sweeping every %ds, grace %ds",
            self._interval, self._grace,
        )

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Orphan reconciler stopped")

    async def sweep(self) -> int:
        """Settle stale journal entries. Returns how many blobs were deleted."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self._grace)
        placeholders = ", ".join(f":s{i}" for i in range(len(UNSETTLED_STATUSES)))
        params = {f"s{i}": s for i, s in enumerate(UNSETTLED_STATUSES)}
        params["cutoff"] = to_db_timestamp(cutoff)
        try:
            entries = await self._store.query_rows(
                "SELECT id, object_key, locator FROM upload_journal "
                f"WHERE status IN ({placeholders}) AND created_at < :cutoff",
                params,
            )
        except RecordStoreError as e:
            logger.error("Reconcile sweep could not read journal: %s", e.message)
            return 0

        deleted = 0
        for entry in entries:
            try:
                if await self._settle(entry):
                    deleted += 1
            except (RecordStoreError, TransferError) as e:
                # Left unsettled; the next sweep tries again
                logger.error("Could not reconcile upload %s: %s", entry["id"], e.message)

        if entries:
            logger.info("Reconcile sweep: %d entries checked, %d orphaned blobs deleted", len(entries), deleted)
        return deleted

    async def _settle(self, entry: dict) -> bool:
        if await self._has_metadata(entry):
            await self._mark(entry["id"], "persisted")
            return False

        await self._storage.delete(entry["object_key"])
        await self._mark(entry["id"], "reconciled")
        logger.warning("Deleted orphaned blob %s (upload %s)", entry["object_key"], entry["id"])
        return True

    async def _has_metadata(self, entry: dict) -> bool:
        if entry["locator"]:
            row = await self._store.query_row(
                "SELECT id FROM files WHERE s3_url = :locator",
                {"locator": entry["locator"]},
            )
        else:
            # Locator never journaled; both storage backends end it with the quoted key
            suffix = quote(entry["object_key"]).replace("!", "!!").replace("%", "!%").replace("_", "!_")
            row = await self._store.query_row(
                "SELECT id FROM files WHERE s3_url LIKE :pattern ESCAPE '!'",
                {"pattern": f"%/{suffix}"},
            )
        return row is not None

    async def _mark(self, upload_id: str, status: str) -> None:
        await self._store.execute(
            "UPDATE upload_journal SET status = :status, finished_at = :finished_at WHERE id = :id",
            {"id": upload_id, "status": status, "finished_at": to_db_timestamp(datetime.now(timezone.utc))},
        )
