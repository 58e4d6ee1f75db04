"""
Location lifecycle service.

Reads, composite updates and deletions over the Location / UserSave / Photo
graph. A location is shared: removing one user's save either detaches that
save or, when the creator removes the last save, destroys the location with
its photos and their blobs.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.models import UserModel
from src.auth.permissions import (
    can_edit_location,
    can_delete_user_save,
    can_view_user_save,
    can_update_user_save,
)
from src.application.blob_cleanup import purge_photo_blobs
from src.config import settings
from src.domain.errors import (
    LifecycleError,
    LocationNotFoundError,
    UserSaveNotFoundError,
    PhotoNotFoundError,
    PermissionDeniedError,
    ConflictError,
    InternalError,
)
from src.domain.models import (
    DeletionSummary,
    MapBounds,
    LOCATION_PATCH_FIELDS,
    COMPOSITE_SAVE_FIELDS,
    PHOTO_PATCH_FIELDS,
)
from src.domain.schemas import LocationUpdateRequest, PhotoEntry, SaveLocationRequest
from src.infrastructure.blob_store import BlobStore, get_blob_store
from src.infrastructure.location_store import LocationStore, UserSaveContext
from src.infrastructure.models import LocationModel, PhotoModel, UserSaveModel

logger = logging.getLogger(__name__)


# Request fields that describe the place itself rather than the user's save
_NEW_LOCATION_FIELDS = (
    "place_id", "name", "address", "lat", "lng", "type", "rating",
    "street", "number", "city", "state", "zipcode",
    "production_notes", "entry_point", "parking", "access", "indoor_outdoor",
    "is_permanent",
)
_NEW_SAVE_FIELDS = ("caption", "tags", "is_favorite", "personal_rating", "color", "visibility")


@dataclass
class LocationUpdateResult:
    """Authoritative view after a composite update."""
    location: LocationModel
    photos: list[PhotoModel] = field(default_factory=list)
    user_save: Optional[UserSaveModel] = None


@dataclass
class SaveLocationResult:
    user_save: UserSaveModel
    location: LocationModel
    already_saved: bool = False


@dataclass
class PublicSavesPage:
    """One page of the public feed; saves come with their location and owner."""
    saves: list[tuple[UserSaveModel, LocationModel, UserModel]]
    primary_photos: dict[int, PhotoModel]
    limit: int
    has_more: bool


class LocationLifecycleManager:
    """
    Service for reading, updating and deleting saved locations.

    Every mutating operation runs in one transaction on the given session
    and commits once; any failure rolls the whole operation back.
    """

    def __init__(self, db: AsyncSession, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.store = LocationStore(db)
        self.blob_store = blob_store or get_blob_store()

    async def _rollback_and_wrap(self, error: Exception, action: str) -> InternalError:
        await self.db.rollback()
        logger.exception(f"Store error while trying to {action}: {error}")
        return InternalError(f"Failed to {action}")

    # --- Read ---

    async def get_user_save(self, user: UserModel, user_save_id: int) -> UserSaveContext:
        """
        Read a save with its location and photos (newest first).

        Raises:
            UserSaveNotFoundError: No such save
            PermissionDeniedError: The save belongs to someone else
        """
        context = await self.store.get_user_save_with_context(user_save_id)
        if context is None:
            raise UserSaveNotFoundError(user_save_id)

        if not can_view_user_save(user, context.user_save):
            raise PermissionDeniedError("Permission denied")

        return context

    async def list_user_saves(self, user: UserModel) -> list[tuple[UserSaveModel, LocationModel]]:
        return await self.store.list_user_saves(user.id)

    async def list_public_saves(
        self,
        limit: int,
        location_type: Optional[str] = None,
        bounds: Optional[MapBounds] = None,
    ) -> PublicSavesPage:
        """
        Public saves from all users, most recently saved first.

        The limit is capped lower without a viewport (grid view) than with
        one (map view). One extra row is fetched to tell whether more exist.
        """
        cap = (
            settings.public_locations_bounds_limit_max
            if bounds is not None
            else settings.public_locations_limit_max
        )
        limit = min(limit, cap)

        rows = await self.store.list_public_saves(limit + 1, location_type=location_type, bounds=bounds)
        has_more = len(rows) > limit
        rows = rows[:limit]

        primary_photos = await self.store.list_primary_photos(location.id for _, location, _ in rows)
        return PublicSavesPage(
            saves=rows,
            primary_photos=primary_photos,
            limit=limit,
            has_more=has_more,
        )

    # --- Save ---

    async def save_location(self, user: UserModel, request: SaveLocationRequest) -> SaveLocationResult:
        """
        Add a place to the user's saves, creating the shared location on first save.

        Saving a place that is already in the user's saves returns the
        existing save. Saving an orphaned location adopts it again.
        """
        payload = request.model_dump()
        location_fields = {name: payload[name] for name in _NEW_LOCATION_FIELDS}
        save_fields = {name: payload[name] for name in _NEW_SAVE_FIELDS}
        save_fields["visibility"] = request.visibility.value
        user_id = user.id

        for attempt in range(2):
            try:
                location = await self.store.get_location_by_place_id(request.place_id)
                if location is None:
                    location = await self.store.create_location(location_fields, creator_id=user_id)
                    logger.info(f"User {user_id} created location {location.id} ({location.place_id})")

                existing = await self.store.find_user_save(user_id, location.id)
                if existing is not None:
                    await self.db.commit()
                    return SaveLocationResult(user_save=existing, location=location, already_saved=True)

                user_save = await self.store.create_user_save(user_id, location.id, save_fields)
                await self.store.clear_orphaned(location)
                await self.db.commit()

                logger.info(f"User {user_id} saved location {location.id} as save {user_save.id}")
                return SaveLocationResult(user_save=user_save, location=location)

            except IntegrityError:
                # Concurrent first save of the same place, or a double submit
                await self.db.rollback()
                if attempt:
                    raise ConflictError("Location was modified concurrently, please retry")
                logger.info(f"Concurrent save of place {request.place_id}, retrying")
            except SQLAlchemyError as e:
                raise await self._rollback_and_wrap(e, "save location")

        raise ConflictError("Location was modified concurrently, please retry")

    # --- Update ---

    async def update_location(
        self,
        user: UserModel,
        location_id: int,
        request: LocationUpdateRequest,
    ) -> LocationUpdateResult:
        """
        Merge-patch a location, the caller's own save of it, and its photos.

        Location fields need edit permission (creator or elevated role). Save
        fields only ever touch the caller's save and are skipped if there is
        none. Photo entries with an id edit caption / primary flag; entries
        without one are inserted.
        """
        changes = request.model_dump(exclude_unset=True, exclude={"photos"})
        location_fields = {k: v for k, v in changes.items() if k in LOCATION_PATCH_FIELDS}
        save_fields = {k: v for k, v in changes.items() if k in COMPOSITE_SAVE_FIELDS}

        try:
            location = await self.store.get_location(location_id, lock=True)
            if location is None:
                raise LocationNotFoundError(location_id)

            if not can_edit_location(user, location):
                raise PermissionDeniedError(
                    "Permission denied. Only the creator or admin can edit this location."
                )

            await self.store.update_location_fields(location, location_fields, modifier_id=user.id)

            user_save = None
            if save_fields:
                user_save = await self.store.find_user_save(user.id, location.id)
                if user_save is not None:
                    await self.store.update_user_save_fields(user_save, save_fields)
                else:
                    logger.info(
                        f"User {user.id} has no save of location {location.id}; "
                        f"ignoring {sorted(save_fields)}"
                    )

            if request.photos is not None:
                await self._apply_photo_entries(user, location, request.photos)

            await self.db.commit()

        except LifecycleError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            raise await self._rollback_and_wrap(e, "update location")

        photos = await self.store.list_photos_for_place(location.place_id)
        logger.info(
            f"User {user.id} updated location {location.id}: "
            f"fields={sorted(location_fields)}, save_fields={sorted(save_fields)}, "
            f"photos={len(photos)}"
        )
        return LocationUpdateResult(location=location, photos=photos, user_save=user_save)

    async def _apply_photo_entries(
        self,
        user: UserModel,
        location: LocationModel,
        entries: list[PhotoEntry],
    ) -> None:
        existing_entries = [entry for entry in entries if entry.id is not None]
        new_entries = [entry for entry in entries if entry.id is None]

        for entry in existing_entries:
            photo = await self.store.get_photo(entry.id)
            if photo is None or photo.location_id != location.id:
                raise PhotoNotFoundError(entry.id, f"Photo {entry.id} not found on this location")

            fields = entry.model_dump(include=set(PHOTO_PATCH_FIELDS), exclude_unset=True)
            if fields.get("is_primary") is None:
                fields.pop("is_primary", None)
            await self.store.update_photo_fields(photo, fields)

        if new_entries:
            # Primary is only auto-assigned to the very first photo set of a location
            mark_first_primary = not existing_entries and not await self.store.has_photos(location.place_id)
            descriptors = [
                entry.model_dump(exclude={"id", "is_primary"}) for entry in new_entries
            ]
            await self.store.upsert_photos(
                location,
                uploader_id=user.id,
                descriptors=descriptors,
                mark_first_primary=mark_first_primary,
            )

    async def update_caption(
        self,
        user: UserModel,
        user_save_id: int,
        caption: Optional[str],
    ) -> UserSaveModel:
        return await self._update_own_save(user, user_save_id, {"caption": caption}, "update caption")

    async def update_visibility(
        self,
        user: UserModel,
        user_save_id: int,
        visibility: str,
    ) -> UserSaveModel:
        return await self._update_own_save(
            user, user_save_id, {"visibility": visibility}, "update visibility"
        )

    async def _update_own_save(
        self,
        user: UserModel,
        user_save_id: int,
        fields: dict,
        action: str,
    ) -> UserSaveModel:
        try:
            user_save = await self.store.get_user_save(user_save_id)
            if user_save is None:
                raise UserSaveNotFoundError(user_save_id)
            if not can_update_user_save(user, user_save):
                raise PermissionDeniedError("Permission denied")

            await self.store.update_user_save_fields(user_save, fields)
            await self.db.commit()
            return user_save
        except LifecycleError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            raise await self._rollback_and_wrap(e, action)

    # --- Delete ---

    async def delete_user_save(self, user: UserModel, user_save_id: int) -> DeletionSummary:
        """
        Remove a save, cascading to the location when appropriate.

        Only the owner may delete a save. If the owner is the location's
        creator and no one else has saved it, the location, its photos and
        their blobs are destroyed. Otherwise only the save goes; when that
        leaves nobody referencing the location, it is marked orphaned.

        Raises:
            UserSaveNotFoundError: No such save, and no record of this user deleting it
            PermissionDeniedError: The save belongs to someone else
        """
        try:
            context = await self.store.get_user_save_with_context(user_save_id, lock=True)
            if context is None:
                tombstone = await self.store.get_tombstone(user_save_id)
                if tombstone is not None and tombstone.user_id == user.id:
                    logger.info(f"Save {user_save_id} already deleted by user {user.id}; nothing to do")
                    return DeletionSummary(user_save=False, already_deleted=True)
                raise UserSaveNotFoundError(user_save_id)

            if not can_delete_user_save(user, context.user_save):
                logger.info(
                    f"User {user.id} denied deleting save {user_save_id} "
                    f"owned by user {context.user_save.user_id}"
                )
                raise PermissionDeniedError("Permission denied")

            location = context.location
            other_saves = context.other_saves
            is_last_save = not other_saves
            is_creator = location.created_by == user.id

            logger.info(
                f"Deleting save {user_save_id} of location {location.id} by user {user.id}: "
                f"creator={is_creator}, last_save={is_last_save}, "
                f"other_saves={len(other_saves)}, photos={len(context.photos)}"
            )

            if is_creator and is_last_save:
                return await self._cascade(user, context)
            return await self._detach(user, context, is_last_save)

        except LifecycleError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            raise await self._rollback_and_wrap(e, "delete location")

    async def _detach(
        self,
        user: UserModel,
        context: UserSaveContext,
        is_last_save: bool,
    ) -> DeletionSummary:
        location = context.location
        user_save_id = context.user_save.id

        removed = await self.store.delete_user_save(user_save_id)
        if not removed:
            # A concurrent delete of the same save already did the bookkeeping
            await self.db.commit()
            logger.info(f"Save {user_save_id} was removed concurrently; nothing to do")
            return DeletionSummary(user_save=False, already_deleted=True)

        if is_last_save:
            await self.store.mark_orphaned(location)
            logger.warning(
                f"Location {location.id} is orphaned: no saves remain, created by user "
                f"{location.created_by}, {len(context.photos)} photo(s) kept"
            )

        await self.store.record_tombstone(user_save_id, user.id, location.id, cascaded=False)
        await self.db.commit()

        logger.info(f"Save {user_save_id} removed; location {location.id} preserved")
        return DeletionSummary(user_save=True, orphaned=is_last_save)

    async def _cascade(self, user: UserModel, context: UserSaveContext) -> DeletionSummary:
        location = context.location
        location_id = location.id
        user_save_id = context.user_save.id
        photos = list(context.photos)

        removed = await self.store.delete_location_cascade(location_id)
        await self.store.record_tombstone(user_save_id, user.id, location_id, cascaded=True)
        await self.db.commit()

        if not removed:
            # A concurrent deleter won the race and owns the blob cleanup
            logger.info(f"Location {location_id} was already deleted concurrently")
            return DeletionSummary(user_save=True, location=True, photo_count=len(photos))

        logger.info(
            f"Location {location_id} deleted with {len(photos)} photo row(s) and save {user_save_id}"
        )

        outcome = await purge_photo_blobs(self.db, self.blob_store, photos, location_id=location_id)
        return DeletionSummary(
            user_save=True,
            location=True,
            photo_count=len(photos),
            blob_count=outcome.deleted_count,
            failed_blob_ids=outcome.failed_ids,
        )
