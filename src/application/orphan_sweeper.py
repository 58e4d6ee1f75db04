"""
Orphan sweep: locations that nobody has saved any more.

A non-creator removing the last save leaves the location in place with
orphaned_at stamped. Under the "sweep" policy such locations are destroyed
once the grace period has passed; under "retain" the sweep only reports them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.application.blob_cleanup import purge_photo_blobs
from src.config import settings
from src.domain.models import OrphanPolicy
from src.infrastructure.blob_store import BlobStore, get_blob_store
from src.infrastructure.location_store import LocationStore

logger = logging.getLogger(__name__)


@dataclass
class OrphanSweepReport:
    policy: str
    dry_run: bool
    cutoff: datetime
    candidates: list[int] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    photo_count: int = 0
    blob_count: int = 0
    failed_blob_ids: list[str] = field(default_factory=list)
    tombstones_pruned: int = 0


class OrphanSweeper:
    """
    Finds orphaned locations and, when the policy allows, cascades them.
    Every non-dry run also prunes delete tombstones past their retention.
    """

    def __init__(
        self,
        db: AsyncSession,
        blob_store: Optional[BlobStore] = None,
        policy: Optional[str] = None,
        grace_period_days: Optional[int] = None,
        tombstone_retention_days: Optional[int] = None,
    ):
        self.db = db
        self.store = LocationStore(db)
        self.blob_store = blob_store or get_blob_store()
        self.policy = OrphanPolicy(policy or settings.orphan_policy)
        self.grace_period_days = (
            settings.orphan_grace_period_days if grace_period_days is None else grace_period_days
        )
        self.tombstone_retention_days = (
            settings.tombstone_retention_days
            if tombstone_retention_days is None
            else tombstone_retention_days
        )

    async def sweep(self, dry_run: bool = False, now: Optional[datetime] = None) -> OrphanSweepReport:
        """
        Run one sweep.

        Args:
            dry_run: Only list the candidates; nothing is deleted or pruned
            now: Reference time for the grace period (defaults to utcnow)
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=self.grace_period_days)
        report = OrphanSweepReport(policy=self.policy.value, dry_run=dry_run, cutoff=cutoff)

        orphans = await self.store.list_orphaned_locations(older_than=cutoff)
        report.candidates = [location.id for location in orphans]
        await self.db.rollback()

        logger.info(
            f"Orphan sweep ({self.policy.value}, dry_run={dry_run}): "
            f"{len(report.candidates)} location(s) orphaned before {cutoff.isoformat()}"
        )

        if not dry_run:
            report.tombstones_pruned = await self._prune_tombstones(now)

        if dry_run or self.policy == OrphanPolicy.RETAIN:
            return report

        for location_id in report.candidates:
            await self._sweep_one(location_id, report)

        logger.info(
            f"Orphan sweep removed {len(report.deleted)} location(s), "
            f"{report.photo_count} photo(s), {report.blob_count} blob(s); "
            f"skipped {len(report.skipped)}, {len(report.failed_blob_ids)} blob(s) queued"
        )
        return report

    async def _sweep_one(self, location_id: int, report: OrphanSweepReport) -> None:
        try:
            location = await self.store.get_location(location_id, lock=True)
            if location is None:
                await self.db.rollback()
                return

            # Someone may have saved it since the candidate query
            if await self.store.list_saves_for_location(location_id):
                logger.info(f"Location {location_id} was saved again, skipping")
                report.skipped.append(location_id)
                await self.db.rollback()
                return

            photos = await self.store.list_photos_for_place(location.place_id)
            removed = await self.store.delete_location_cascade(location_id)
            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Store error while sweeping location {location_id}: {e}")
            report.skipped.append(location_id)
            return

        if not removed:
            return

        logger.warning(f"Swept orphaned location {location_id} with {len(photos)} photo(s)")
        outcome = await purge_photo_blobs(self.db, self.blob_store, photos, location_id=location_id)

        report.deleted.append(location_id)
        report.photo_count += len(photos)
        report.blob_count += outcome.deleted_count
        report.failed_blob_ids.extend(outcome.failed_ids)

    async def _prune_tombstones(self, now: datetime) -> int:
        cutoff = now - timedelta(days=self.tombstone_retention_days)
        try:
            pruned = await self.store.prune_tombstones(older_than=cutoff)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Store error while pruning delete tombstones: {e}")
            return 0

        if pruned:
            logger.info(f"Pruned {pruned} delete tombstone(s) older than {cutoff.isoformat()}")
        return pruned
