"""
Locations API endpoints: a user's saves of shared locations.
All endpoints require authentication (Bearer token).

Read, delete, caption and visibility address a save by its id; the
composite update and the photo routes address the shared location.
The public feed lists everyone's public saves.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import get_db
from src.infrastructure.blob_store import BlobStore, get_blob_store
from src.auth.dependencies import get_current_user
from src.auth.models import UserModel
from src.application.location_lifecycle import LocationLifecycleManager
from src.application.serializers import (
    location_to_response,
    user_save_to_response,
    public_save_to_response,
)
from src.domain.errors import LifecycleError
from src.domain.models import MapBounds
from src.domain.schemas import (
    UserSaveDetailResponse,
    UserSavesListResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    SaveLocationRequest,
    SaveLocationResponse,
    CaptionUpdateRequest,
    VisibilityUpdateRequest,
    VisibilityResponse,
    DeleteSaveResponse,
    PublicLocationsResponse,
)
from src.api.errors import to_http_exception


router = APIRouter(prefix="/locations", tags=["locations"])


def get_lifecycle_manager(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> LocationLifecycleManager:
    return LocationLifecycleManager(db, blob_store=blob_store)


@router.get(
    "",
    response_model=UserSavesListResponse,
    summary="List saved locations",
    description="Get the user's saved locations, most recently saved first."
)
async def list_saved_locations(
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> UserSavesListResponse:
    rows = await manager.list_user_saves(user)
    saves = [user_save_to_response(user_save, location) for user_save, location in rows]
    return UserSavesListResponse(saves=saves, total=len(saves))


@router.post(
    "",
    response_model=SaveLocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a location",
    description="Save a place. Creates the shared location if nobody has saved it yet."
)
async def save_location(
    request: SaveLocationRequest,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> SaveLocationResponse:
    """
    Save a place to the user's locations.

    - If the place is already saved by this user, returns the existing save with already_saved=true
    - The first user to save a place becomes the location's creator
    """
    try:
        result = await manager.save_location(user, request)
    except LifecycleError as e:
        raise to_http_exception(e)

    return SaveLocationResponse(
        user_save=user_save_to_response(result.user_save, result.location),
        already_saved=result.already_saved,
    )


@router.get(
    "/public",
    response_model=PublicLocationsResponse,
    summary="List public locations",
    description="Public saves from all users, optionally filtered by location type and map viewport."
)
async def list_public_locations(
    bounds: Optional[str] = Query(
        default=None,
        description='Viewport as JSON: {"north": .., "south": .., "east": .., "west": ..}',
    ),
    location_type: Optional[str] = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, description="Capped at 100, or 500 with bounds"),
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> PublicLocationsResponse:
    viewport = None
    if bounds is not None:
        try:
            viewport = MapBounds.model_validate_json(bounds)
        except ValidationError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid bounds parameter"
            )

    page = await manager.list_public_saves(limit, location_type=location_type, bounds=viewport)
    locations = [
        public_save_to_response(user_save, location, owner, page.primary_photos.get(location.id))
        for user_save, location, owner in page.saves
    ]
    return PublicLocationsResponse(
        locations=locations,
        total=len(locations),
        limit=page.limit,
        has_more=page.has_more,
    )


@router.get(
    "/{user_save_id}",
    response_model=UserSaveDetailResponse,
    summary="Get saved location",
    description="Get one of the user's saves with its location and photos (newest first)."
)
async def get_saved_location(
    user_save_id: int,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> UserSaveDetailResponse:
    try:
        context = await manager.get_user_save(user, user_save_id)
    except LifecycleError as e:
        raise to_http_exception(e)

    return UserSaveDetailResponse(
        user_save=user_save_to_response(context.user_save, context.location, context.photos)
    )


@router.patch(
    "/{location_id}",
    response_model=LocationUpdateResponse,
    summary="Update location",
    description=(
        "Partially update a location, the caller's own save of it, and its photos. "
        "Only the creator or an admin can edit a location."
    )
)
async def update_location(
    location_id: int,
    request: LocationUpdateRequest,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> LocationUpdateResponse:
    """
    Merge-patch semantics: fields omitted from the body are left unchanged.

    - tags, is_favorite, personal_rating and color apply to the caller's save (ignored if none)
    - photos entries with an id edit caption / primary flag; entries without one are new uploads
    """
    try:
        result = await manager.update_location(user, location_id, request)
    except LifecycleError as e:
        raise to_http_exception(e)

    return LocationUpdateResponse(
        location=location_to_response(result.location, result.photos),
        user_save=user_save_to_response(result.user_save) if result.user_save is not None else None,
    )


@router.delete(
    "/{user_save_id}",
    response_model=DeleteSaveResponse,
    summary="Delete saved location",
    description=(
        "Remove a location from the user's saves. If the user created the location "
        "and nobody else has saved it, the location and its photos are deleted too."
    )
)
async def delete_saved_location(
    user_save_id: int,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> DeleteSaveResponse:
    try:
        summary = await manager.delete_user_save(user, user_save_id)
    except LifecycleError as e:
        raise to_http_exception(e)

    return DeleteSaveResponse(message=summary.message, deleted=summary)


@router.patch(
    "/{user_save_id}/caption",
    response_model=UserSaveDetailResponse,
    summary="Update caption",
)
async def update_caption(
    user_save_id: int,
    request: CaptionUpdateRequest,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> UserSaveDetailResponse:
    """Set or clear the caption of the user's own save."""
    try:
        user_save = await manager.update_caption(user, user_save_id, request.caption)
    except LifecycleError as e:
        raise to_http_exception(e)

    return UserSaveDetailResponse(user_save=user_save_to_response(user_save))


@router.patch(
    "/{user_save_id}/visibility",
    response_model=VisibilityResponse,
    summary="Update visibility",
)
async def update_visibility(
    user_save_id: int,
    request: VisibilityUpdateRequest,
    user: UserModel = Depends(get_current_user),
    manager: LocationLifecycleManager = Depends(get_lifecycle_manager),
) -> VisibilityResponse:
    """Change who can see the user's save: public, private or followers."""
    try:
        await manager.update_visibility(user, user_save_id, request.visibility.value)
    except LifecycleError as e:
        raise to_http_exception(e)

    return VisibilityResponse(success=True, visibility=request.visibility)
