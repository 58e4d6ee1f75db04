"""
Blob deletion after relational deletes, and reconciliation of failures.

Rows are always removed (and committed) before their blobs, so a failure
here can only leak a blob, never leave a row pointing at a missing file.
Failed ids are queued in pending_blob_deletions for a later retry.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.infrastructure.blob_store import BlobStore, BlobDeletionResult, delete_blobs
from src.infrastructure.location_store import LocationStore
from src.infrastructure.models import PhotoModel

logger = logging.getLogger(__name__)


@dataclass
class BlobPurgeOutcome:
    """Aggregated per-file results of one purge."""
    results: list[BlobDeletionResult] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed_ids(self) -> list[str]:
        return [result.file_id for result in self.results if not result.success]


async def purge_photo_blobs(
    db: AsyncSession,
    blob_store: BlobStore,
    photos: Iterable[PhotoModel],
    location_id: Optional[int] = None,
) -> BlobPurgeOutcome:
    """
    Attempt to delete the blob of every photo and queue the failures.

    Must be called after the photo rows are committed away. Never raises for
    blob failures; a failure to queue them is logged, since the relational
    delete has already succeeded.
    """
    photos = list(photos)
    if not photos:
        return BlobPurgeOutcome()

    logger.info(f"Deleting {len(photos)} photo blob(s) for location {location_id}")
    results = await delete_blobs(blob_store, [photo.file_id for photo in photos])
    outcome = BlobPurgeOutcome(results=results)

    if outcome.failed_ids:
        photos_by_file = {photo.file_id: photo for photo in photos}
        store = LocationStore(db)
        try:
            for result in results:
                if result.success:
                    continue
                photo = photos_by_file.get(result.file_id)
                logger.warning(
                    f"Failed to delete blob {result.file_id} "
                    f"(photo {photo.id if photo else '?'}): {result.error}"
                )
                await store.record_pending_blob_deletion(
                    file_id=result.file_id,
                    error=result.error,
                    photo_id=photo.id if photo else None,
                    location_id=location_id,
                )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                f"Could not queue {len(outcome.failed_ids)} failed blob deletion(s) "
                f"{outcome.failed_ids}: {e}"
            )

    logger.info(
        f"Blob purge for location {location_id}: "
        f"{outcome.deleted_count}/{len(photos)} deleted, {len(outcome.failed_ids)} failed"
    )
    return outcome


@dataclass
class BlobRetryReport:
    attempted: int = 0
    deleted: int = 0
    still_failing: list[str] = field(default_factory=list)


async def retry_pending_blob_deletions(
    db: AsyncSession,
    blob_store: BlobStore,
    limit: Optional[int] = None,
) -> BlobRetryReport:
    """Re-attempt queued blob deletions; successes leave the queue."""
    store = LocationStore(db)
    pending = await store.list_pending_blob_deletions(limit or settings.blob_retry_batch_size)
    report = BlobRetryReport(attempted=len(pending))
    if not pending:
        return report

    results = await delete_blobs(blob_store, [item.file_id for item in pending])
    for item, result in zip(pending, results):
        if result.success:
            await store.delete_pending_blob_deletion(item.id)
            report.deleted += 1
        else:
            await store.record_pending_blob_deletion(file_id=item.file_id, error=result.error)
            report.still_failing.append(item.file_id)

    await db.commit()
    logger.info(
        f"Blob reconciliation: {report.deleted}/{report.attempted} deleted, "
        f"{len(report.still_failing)} still failing"
    )
    return report
