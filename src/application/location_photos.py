"""
Photo operations on a single location: paginated listing, attaching an
uploaded file, and deleting one photo together with its blob.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.models import UserModel
from src.auth.permissions import can_edit_location, can_delete_photo
from src.application.blob_cleanup import purge_photo_blobs
from src.config import settings
from src.domain.errors import (
    LifecycleError,
    LocationNotFoundError,
    PhotoNotFoundError,
    PermissionDeniedError,
    ConflictError,
    InternalError,
)
from src.domain.schemas import PhotoCreateRequest
from src.infrastructure.blob_store import BlobStore, get_blob_store
from src.infrastructure.location_store import LocationStore
from src.infrastructure.models import PhotoModel

logger = logging.getLogger(__name__)


@dataclass
class PhotoPage:
    photos: list[PhotoModel] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class PhotoDeletion:
    photo: bool
    blob: bool


class LocationPhotoService:
    """Photos of a location, outside the composite update."""

    def __init__(self, db: AsyncSession, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.store = LocationStore(db)
        self.blob_store = blob_store or get_blob_store()

    async def list_location_photos(
        self,
        location_id: int,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PhotoPage:
        """
        One page of a location's uploaded photos, newest first.

        Raises:
            LocationNotFoundError: No such location
        """
        location = await self.store.get_location(location_id)
        if location is None:
            raise LocationNotFoundError(location_id)

        page = max(page, 1)
        limit = min(limit or settings.photos_page_size_default, settings.photos_page_size_max)

        photos, total = await self.store.list_photos_page(location.id, page, limit)
        return PhotoPage(photos=photos, page=page, limit=limit, total=total)

    async def add_photo(
        self,
        user: UserModel,
        location_id: int,
        request: PhotoCreateRequest,
    ) -> PhotoModel:
        """
        Attach an already uploaded file to a location.

        Anyone who saved the location may add photos, as may its editors.
        The first photo of a location becomes its primary photo.
        """
        try:
            location = await self.store.get_location(location_id)
            if location is None:
                raise LocationNotFoundError(location_id)

            has_save = await self.store.find_user_save(user.id, location.id) is not None
            if not has_save and not can_edit_location(user, location):
                raise PermissionDeniedError("Permission denied. Save this location to add photos.")

            first_photo = not await self.store.has_photos(location.place_id)
            photos = await self.store.upsert_photos(
                location,
                uploader_id=user.id,
                descriptors=[request.model_dump()],
                mark_first_primary=first_photo,
            )
            await self.db.commit()

        except LifecycleError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Photo for location {location_id} rejected: {e}")
            raise ConflictError("Location was deleted while adding the photo")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Store error while adding photo to location {location_id}: {e}")
            raise InternalError("Failed to add photo")

        photo = photos[0]
        logger.info(f"User {user.id} added photo {photo.id} ({photo.file_id}) to location {location.id}")
        return photo

    async def delete_photo(self, user: UserModel, photo_id: int) -> PhotoDeletion:
        """
        Delete one photo row, then its blob.

        The uploader or anyone who may edit the location can delete a photo.
        A blob failure is queued for reconciliation and reported as blob=False.
        """
        user_id = user.id
        try:
            photo = await self.store.get_photo(photo_id)
            if photo is None:
                raise PhotoNotFoundError(photo_id)

            location = await self.store.get_location(photo.location_id)
            if location is None:
                raise PhotoNotFoundError(photo_id)

            if not can_delete_photo(user, photo, location):
                raise PermissionDeniedError("Permission denied")

            location_id = location.id
            removed = await self.store.delete_photo(photo.id)
            await self.db.commit()

        except LifecycleError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Store error while deleting photo {photo_id}: {e}")
            raise InternalError("Failed to delete photo")

        if not removed:
            logger.info(f"Photo {photo_id} was already deleted concurrently")
            return PhotoDeletion(photo=True, blob=False)

        outcome = await purge_photo_blobs(self.db, self.blob_store, [photo], location_id=location_id)
        logger.info(f"User {user_id} deleted photo {photo_id} from location {location_id}")
        return PhotoDeletion(photo=True, blob=outcome.deleted_count == 1)
