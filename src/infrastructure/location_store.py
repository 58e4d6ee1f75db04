"""
Relational access to locations, saves and photos.

The store only flushes; committing (and rolling back) is the caller's job so
that a multi-entity operation runs as one transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, update, delete, func, exists, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.auth.models import UserModel
from src.domain.models import (
    LOCATION_PATCH_FIELDS,
    USER_SAVE_PATCH_FIELDS,
    PHOTO_PATCH_FIELDS,
    MapBounds,
    Visibility,
)
from src.infrastructure.models import (
    LocationModel,
    UserSaveModel,
    PhotoModel,
    UserSaveTombstoneModel,
    PendingBlobDeletionModel,
)

logger = logging.getLogger(__name__)


@dataclass
class UserSaveContext:
    """A save together with its location, the location's photos and every save of that location."""
    user_save: UserSaveModel
    location: LocationModel
    photos: list[PhotoModel] = field(default_factory=list)
    siblings: list[UserSaveModel] = field(default_factory=list)

    @property
    def other_saves(self) -> list[UserSaveModel]:
        """Saves of the same location by anyone, excluding this one."""
        return [save for save in self.siblings if save.id != self.user_save.id]


def _check_fields(fields: dict[str, Any], allowed: frozenset, entity: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Fields not patchable on {entity}: {', '.join(sorted(unknown))}")


class LocationStore:
    """Typed CRUD plus the composite reads the lifecycle operations need."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Locations ---

    async def get_location(self, location_id: int, lock: bool = False) -> Optional[LocationModel]:
        """
        Fetch a location by id.

        Args:
            location_id: Location primary key
            lock: Take a row lock until the transaction ends (no-op on SQLite)
        """
        stmt = select(LocationModel).where(LocationModel.id == location_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_location_by_place_id(self, place_id: str) -> Optional[LocationModel]:
        result = await self.db.execute(
            select(LocationModel).where(LocationModel.place_id == place_id)
        )
        return result.scalar_one_or_none()

    async def create_location(self, fields: dict[str, Any], creator_id: int) -> LocationModel:
        location = LocationModel(**fields, created_by=creator_id)
        self.db.add(location)
        await self.db.flush()
        return location

    async def update_location_fields(
        self,
        location: LocationModel,
        fields: dict[str, Any],
        modifier_id: int,
    ) -> LocationModel:
        """
        Merge-patch a location. Only keys present in `fields` are written;
        the audit pair is stamped even when nothing else changes.
        """
        _check_fields(fields, LOCATION_PATCH_FIELDS, "location")
        for name, value in fields.items():
            setattr(location, name, value)

        location.last_modified_by = modifier_id
        location.last_modified_at = datetime.utcnow()
        await self.db.flush()
        return location

    async def _set_orphaned_at(self, location: LocationModel, value: Optional[datetime]) -> None:
        """Write orphaned_at alone; updated_at is pinned so its onupdate default does not fire."""
        await self.db.execute(
            update(LocationModel)
            .where(LocationModel.id == location.id)
            .values(orphaned_at=value, updated_at=LocationModel.updated_at)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(location, "orphaned_at", value)

    async def mark_orphaned(self, location: LocationModel, when: Optional[datetime] = None) -> None:
        await self._set_orphaned_at(location, when or datetime.utcnow())

    async def clear_orphaned(self, location: LocationModel) -> None:
        if location.orphaned_at is not None:
            await self._set_orphaned_at(location, None)

    async def delete_location_cascade(self, location_id: int) -> bool:
        """
        Delete a location row. The database cascades to its photos and saves
        in the same statement.

        Returns:
            False if the location was already gone
        """
        result = await self.db.execute(
            delete(LocationModel).where(LocationModel.id == location_id)
        )
        return result.rowcount > 0

    async def list_orphaned_locations(self, older_than: datetime) -> list[LocationModel]:
        """
        Locations nobody has saved, orphaned before the cutoff.
        Unstamped ones (never saved at all) qualify by their last update time.
        """
        has_saves = exists().where(UserSaveModel.location_id == LocationModel.id)
        result = await self.db.execute(
            select(LocationModel)
            .where(~has_saves)
            .where(
                or_(
                    LocationModel.orphaned_at <= older_than,
                    and_(
                        LocationModel.orphaned_at.is_(None),
                        LocationModel.updated_at <= older_than,
                    ),
                )
            )
            .order_by(LocationModel.id)
        )
        return list(result.scalars().all())

    # --- Saves ---

    async def get_user_save(self, user_save_id: int) -> Optional[UserSaveModel]:
        result = await self.db.execute(
            select(UserSaveModel).where(UserSaveModel.id == user_save_id)
        )
        return result.scalar_one_or_none()

    async def find_user_save(self, user_id: int, location_id: int) -> Optional[UserSaveModel]:
        """The given user's save of the given location, if any."""
        result = await self.db.execute(
            select(UserSaveModel).where(
                and_(
                    UserSaveModel.user_id == user_id,
                    UserSaveModel.location_id == location_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_saves_for_location(self, location_id: int) -> list[UserSaveModel]:
        result = await self.db.execute(
            select(UserSaveModel)
            .where(UserSaveModel.location_id == location_id)
            .order_by(UserSaveModel.id)
        )
        return list(result.scalars().all())

    async def get_user_save_with_context(
        self,
        user_save_id: int,
        lock: bool = False,
    ) -> Optional[UserSaveContext]:
        """
        Resolve a save, its location, the location's photos and all saves of it.

        With lock=True the location row is locked before siblings are counted,
        so two deleters of the same location are serialized.

        Returns:
            None if the save (or, concurrently, its location) no longer exists
        """
        user_save = await self.get_user_save(user_save_id)
        if user_save is None:
            return None

        location = await self.get_location(user_save.location_id, lock=lock)
        if location is None:
            return None

        siblings = await self.list_saves_for_location(location.id)
        if not any(save.id == user_save.id for save in siblings):
            # Removed while we waited for the lock
            return None

        photos = await self.list_photos_for_place(location.place_id, newest_first=True)
        return UserSaveContext(
            user_save=user_save,
            location=location,
            photos=photos,
            siblings=siblings,
        )

    async def list_user_saves(self, user_id: int) -> list[tuple[UserSaveModel, LocationModel]]:
        """A user's saves with their locations, most recent first."""
        result = await self.db.execute(
            select(UserSaveModel, LocationModel)
            .join(LocationModel, LocationModel.id == UserSaveModel.location_id)
            .where(UserSaveModel.user_id == user_id)
            .order_by(UserSaveModel.saved_at.desc(), UserSaveModel.id.desc())
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_public_saves(
        self,
        limit: int,
        location_type: Optional[str] = None,
        bounds: Optional[MapBounds] = None,
    ) -> list[tuple[UserSaveModel, LocationModel, UserModel]]:
        """
        Public saves by anyone with their location and owner, most recent first.

        Args:
            limit: Maximum rows returned
            location_type: Only locations of this type
            bounds: Only locations inside this viewport
        """
        stmt = (
            select(UserSaveModel, LocationModel, UserModel)
            .join(LocationModel, LocationModel.id == UserSaveModel.location_id)
            .join(UserModel, UserModel.id == UserSaveModel.user_id)
            .where(UserSaveModel.visibility == Visibility.PUBLIC.value)
        )
        if location_type:
            stmt = stmt.where(LocationModel.type == location_type)
        if bounds is not None:
            stmt = stmt.where(LocationModel.lat.between(bounds.south, bounds.north))
            if bounds.west <= bounds.east:
                stmt = stmt.where(LocationModel.lng.between(bounds.west, bounds.east))
            else:
                stmt = stmt.where(or_(LocationModel.lng >= bounds.west, LocationModel.lng <= bounds.east))

        result = await self.db.execute(
            stmt.order_by(UserSaveModel.saved_at.desc(), UserSaveModel.id.desc()).limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def create_user_save(
        self,
        user_id: int,
        location_id: int,
        fields: dict[str, Any],
    ) -> UserSaveModel:
        _check_fields(fields, USER_SAVE_PATCH_FIELDS, "save")
        user_save = UserSaveModel(user_id=user_id, location_id=location_id, **fields)
        self.db.add(user_save)
        await self.db.flush()
        return user_save

    async def update_user_save_fields(
        self,
        user_save: UserSaveModel,
        fields: dict[str, Any],
    ) -> UserSaveModel:
        """Merge-patch the owner-controlled fields of a save."""
        _check_fields(fields, USER_SAVE_PATCH_FIELDS, "save")
        for name, value in fields.items():
            setattr(user_save, name, value)
        await self.db.flush()
        return user_save

    async def delete_user_save(self, user_save_id: int) -> bool:
        """Returns False if the save was already gone."""
        result = await self.db.execute(
            delete(UserSaveModel).where(UserSaveModel.id == user_save_id)
        )
        return result.rowcount > 0

    # --- Tombstones ---

    async def record_tombstone(
        self,
        user_save_id: int,
        user_id: int,
        location_id: int,
        cascaded: bool,
    ) -> None:
        await self.db.merge(
            UserSaveTombstoneModel(
                user_save_id=user_save_id,
                user_id=user_id,
                location_id=location_id,
                cascaded=cascaded,
                deleted_at=datetime.utcnow(),
            )
        )
        await self.db.flush()

    async def get_tombstone(self, user_save_id: int) -> Optional[UserSaveTombstoneModel]:
        result = await self.db.execute(
            select(UserSaveTombstoneModel).where(UserSaveTombstoneModel.user_save_id == user_save_id)
        )
        return result.scalar_one_or_none()

    async def prune_tombstones(self, older_than: datetime) -> int:
        result = await self.db.execute(
            delete(UserSaveTombstoneModel).where(UserSaveTombstoneModel.deleted_at < older_than)
        )
        return result.rowcount

    # --- Photos ---

    async def get_photo(self, photo_id: int) -> Optional[PhotoModel]:
        result = await self.db.execute(
            select(PhotoModel).where(PhotoModel.id == photo_id)
        )
        return result.scalar_one_or_none()

    async def list_photos_for_place(self, place_id: str, newest_first: bool = False) -> list[PhotoModel]:
        """
        All photos of a place, matched by its external place id.

        Default order puts the primary photo first, then upload order.
        """
        stmt = select(PhotoModel).where(PhotoModel.place_id == place_id)
        if newest_first:
            stmt = stmt.order_by(PhotoModel.uploaded_at.desc(), PhotoModel.id.desc())
        else:
            stmt = stmt.order_by(
                PhotoModel.is_primary.desc(),
                PhotoModel.uploaded_at.asc(),
                PhotoModel.id.asc(),
            )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_photos(self, place_id: str) -> int:
        result = await self.db.execute(
            select(func.count(PhotoModel.id)).where(PhotoModel.place_id == place_id)
        )
        return result.scalar_one()

    async def has_photos(self, place_id: str) -> bool:
        return await self.count_photos(place_id) > 0

    async def list_primary_photos(self, location_ids: Iterable[int]) -> dict[int, PhotoModel]:
        """The primary photo of each given location that has one, keyed by location id."""
        ids = set(location_ids)
        if not ids:
            return {}

        result = await self.db.execute(
            select(PhotoModel)
            .where(PhotoModel.location_id.in_(ids), PhotoModel.is_primary.is_(True))
            .order_by(PhotoModel.id)
        )
        primaries: dict[int, PhotoModel] = {}
        for photo in result.scalars().all():
            primaries.setdefault(photo.location_id, photo)
        return primaries

    async def list_photos_page(
        self,
        location_id: int,
        page: int,
        limit: int,
    ) -> tuple[list[PhotoModel], int]:
        """One page of confirmed uploads (non-empty file id), newest first, plus the total."""
        conditions = and_(PhotoModel.location_id == location_id, PhotoModel.file_id != "")

        total_result = await self.db.execute(
            select(func.count(PhotoModel.id)).where(conditions)
        )
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(PhotoModel)
            .where(conditions)
            .order_by(PhotoModel.uploaded_at.desc(), PhotoModel.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def upsert_photos(
        self,
        location: LocationModel,
        uploader_id: int,
        descriptors: Iterable[dict[str, Any]],
        mark_first_primary: bool = False,
    ) -> list[PhotoModel]:
        """
        Insert photo rows for already uploaded blobs.

        At most the first row of the batch is marked primary, and only when
        the caller says this is the location's first photo set. place_id is
        always copied from the location, never taken from the descriptor.
        """
        photos = []
        for index, descriptor in enumerate(descriptors):
            file_path = descriptor["file_path"]
            photo = PhotoModel(
                location_id=location.id,
                place_id=location.place_id,
                user_id=uploader_id,
                file_id=descriptor["file_id"],
                file_path=file_path,
                original_filename=(
                    descriptor.get("original_filename")
                    or file_path.rsplit("/", 1)[-1]
                    or "photo.jpg"
                ),
                file_size=descriptor.get("file_size"),
                mime_type=descriptor.get("mime_type"),
                width=descriptor.get("width"),
                height=descriptor.get("height"),
                caption=descriptor.get("caption"),
                is_primary=mark_first_primary and index == 0,
            )
            self.db.add(photo)
            photos.append(photo)

        if photos:
            await self.db.flush()
        return photos

    async def update_photo_fields(self, photo: PhotoModel, fields: dict[str, Any]) -> PhotoModel:
        """Merge-patch photo metadata. Binary content is never touched."""
        _check_fields(fields, PHOTO_PATCH_FIELDS, "photo")
        for name, value in fields.items():
            setattr(photo, name, value)
        await self.db.flush()
        return photo

    async def delete_photo(self, photo_id: int) -> bool:
        result = await self.db.execute(
            delete(PhotoModel).where(PhotoModel.id == photo_id)
        )
        return result.rowcount > 0

    # --- Blob reconciliation queue ---

    async def record_pending_blob_deletion(
        self,
        file_id: str,
        error: Optional[str],
        photo_id: Optional[int] = None,
        location_id: Optional[int] = None,
    ) -> PendingBlobDeletionModel:
        result = await self.db.execute(
            select(PendingBlobDeletionModel).where(PendingBlobDeletionModel.file_id == file_id)
        )
        pending = result.scalar_one_or_none()

        if pending is None:
            pending = PendingBlobDeletionModel(
                file_id=file_id,
                photo_id=photo_id,
                location_id=location_id,
                attempts=1,
                last_error=error,
            )
            self.db.add(pending)
        else:
            pending.attempts += 1
            pending.last_error = error

        await self.db.flush()
        return pending

    async def list_pending_blob_deletions(self, limit: int) -> list[PendingBlobDeletionModel]:
        result = await self.db.execute(
            select(PendingBlobDeletionModel)
            .order_by(PendingBlobDeletionModel.updated_at.asc(), PendingBlobDeletionModel.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_pending_blob_deletion(self, pending_id: int) -> None:
        await self.db.execute(
            delete(PendingBlobDeletionModel).where(PendingBlobDeletionModel.id == pending_id)
        )
