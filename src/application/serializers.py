"""
Conversion from ORM rows to API response models.

Rows are read column by column so that no relationship ever lazy-loads
inside the async session.
"""
from typing import Any, Iterable, Optional

from sqlalchemy import inspect

from src.config import settings
from src.auth.models import UserModel
from src.domain.schemas import (
    LocationResponse,
    PhotoResponse,
    UserSaveResponse,
    PublicLocationResponse,
    PublicUserResponse,
)
from src.infrastructure.models import LocationModel, PhotoModel, UserSaveModel


THUMBNAIL_TRANSFORM = "tr=w-400,h-400,c-at_max,fo-auto,q-80"


def _columns(row: Any) -> dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


def photo_url(file_path: str) -> str:
    """Public delivery URL for a blob store file path."""
    clean_path = file_path if file_path.startswith("/") else f"/{file_path}"
    return f"{settings.imagekit_url_endpoint.rstrip('/')}{clean_path}"


def photo_to_response(photo: PhotoModel) -> PhotoResponse:
    url = photo_url(photo.file_path)
    return PhotoResponse(
        **_columns(photo),
        url=url,
        thumbnail_url=f"{url}?{THUMBNAIL_TRANSFORM}",
    )


def location_to_response(
    location: LocationModel,
    photos: Optional[Iterable[PhotoModel]] = None,
) -> LocationResponse:
    return LocationResponse(
        **_columns(location),
        photos=[photo_to_response(photo) for photo in (photos or [])],
    )


def user_save_to_response(
    user_save: UserSaveModel,
    location: Optional[LocationModel] = None,
    photos: Optional[Iterable[PhotoModel]] = None,
) -> UserSaveResponse:
    fields = _columns(user_save)
    fields["tags"] = fields.get("tags") or []
    return UserSaveResponse(
        **fields,
        location=location_to_response(location, photos) if location is not None else None,
    )


def public_save_to_response(
    user_save: UserSaveModel,
    location: LocationModel,
    owner: UserModel,
    primary_photo: Optional[PhotoModel] = None,
) -> PublicLocationResponse:
    return PublicLocationResponse(
        id=location.id,
        user_save_id=user_save.id,
        place_id=location.place_id,
        name=location.name,
        address=location.address,
        city=location.city,
        state=location.state,
        lat=location.lat,
        lng=location.lng,
        type=location.type,
        indoor_outdoor=location.indoor_outdoor,
        rating=user_save.personal_rating,
        caption=user_save.caption,
        saved_at=user_save.saved_at,
        photo_url=photo_url(primary_photo.file_path) if primary_photo is not None else None,
        user=PublicUserResponse(id=owner.id, username=owner.username, display_name=owner.display_name),
    )
