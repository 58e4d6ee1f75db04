"""
Photos API endpoints.
All endpoints require authentication (Bearer token).
"""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import get_db
from src.infrastructure.blob_store import BlobStore, get_blob_store
from src.auth.dependencies import get_current_user
from src.auth.models import UserModel
from src.application.location_photos import LocationPhotoService
from src.application.serializers import photo_to_response
from src.config import settings
from src.domain.errors import LifecycleError
from src.domain.schemas import (
    PhotoCreateRequest,
    PhotoResponse,
    PhotoListResponse,
    Pagination,
    PhotoDeleteResponse,
    PhotoDeleteSummary,
)
from src.api.errors import to_http_exception


router = APIRouter(tags=["photos"])


def get_photo_service(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> LocationPhotoService:
    return LocationPhotoService(db, blob_store=blob_store)


@router.get(
    "/locations/{location_id}/photos",
    response_model=PhotoListResponse,
    summary="List location photos",
    description="Paginated photos of a location, newest first."
)
async def list_location_photos(
    location_id: int,
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.photos_page_size_default, ge=1, description="Page size (capped)"),
    user: UserModel = Depends(get_current_user),
    service: LocationPhotoService = Depends(get_photo_service),
) -> PhotoListResponse:
    try:
        result = await service.list_location_photos(location_id, page=page, limit=limit)
    except LifecycleError as e:
        raise to_http_exception(e)

    response.headers["X-Total-Count"] = str(result.total)
    response.headers["X-Page"] = str(result.page)
    response.headers["X-Per-Page"] = str(result.limit)
    response.headers["X-Total-Pages"] = str(result.total_pages)

    return PhotoListResponse(
        photos=[photo_to_response(photo) for photo in result.photos],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.post(
    "/locations/{location_id}/photos",
    response_model=PhotoResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add photo",
    description="Attach an uploaded file to a location. The caller must have saved the location or be able to edit it."
)
async def add_location_photo(
    location_id: int,
    request: PhotoCreateRequest,
    user: UserModel = Depends(get_current_user),
    service: LocationPhotoService = Depends(get_photo_service),
) -> PhotoResponse:
    try:
        photo = await service.add_photo(user, location_id, request)
    except LifecycleError as e:
        raise to_http_exception(e)

    return photo_to_response(photo)


@router.delete(
    "/photos/{photo_id}",
    response_model=PhotoDeleteResponse,
    summary="Delete photo",
    description="Delete a photo and its stored file. Allowed for the uploader and the location's editors."
)
async def delete_photo(
    photo_id: int,
    user: UserModel = Depends(get_current_user),
    service: LocationPhotoService = Depends(get_photo_service),
) -> PhotoDeleteResponse:
    try:
        result = await service.delete_photo(user, photo_id)
    except LifecycleError as e:
        raise to_http_exception(e)

    message = "Photo deleted successfully" if result.blob else "Photo deleted; file cleanup is pending"
    return PhotoDeleteResponse(
        message=message,
        deleted=PhotoDeleteSummary(photo=result.photo, blob=result.blob),
    )
