"""
Request/Response schemas for API endpoints.
These schemas define the contract between the web client and the backend.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from src.domain.models import DeletionSummary, Visibility


HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _reject_explicit_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    """Merge-patch: omitting a field keeps it, but some columns cannot be cleared."""
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


# --- Photos ---

class PhotoResponse(BaseModel):
    """Photo metadata with delivery URLs."""
    id: int
    location_id: int
    place_id: str
    user_id: int
    file_id: str
    file_path: str
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    original_filename: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_primary: bool
    caption: Optional[str] = None
    uploaded_at: datetime

    class Config:
        from_attributes = True


class PhotoEntry(BaseModel):
    """
    One entry of the `photos` array in a location update.
    Entries with an id edit an existing photo; entries without one describe a new upload.
    """
    id: Optional[int] = Field(default=None, description="Existing photo id")
    caption: Optional[str] = Field(default=None, max_length=500)
    is_primary: Optional[bool] = None

    file_id: Optional[str] = Field(default=None, description="Blob store file id of a new upload")
    file_path: Optional[str] = None
    original_filename: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_new_photo_fields(self) -> "PhotoEntry":
        if self.id is None and (not self.file_id or not self.file_path):
            raise ValueError("new photos require file_id and file_path")
        return self


class PhotoCreateRequest(BaseModel):
    """Attach an already uploaded file to a location."""
    file_id: str = Field(min_length=1)
    file_path: str = Field(min_length=1)
    original_filename: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    caption: Optional[str] = Field(default=None, max_length=500)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PhotoListResponse(BaseModel):
    photos: list[PhotoResponse]
    pagination: Pagination


class PhotoDeleteSummary(BaseModel):
    photo: bool
    blob: bool


class PhotoDeleteResponse(BaseModel):
    message: str
    deleted: PhotoDeleteSummary


# --- Locations ---

class LocationResponse(BaseModel):
    """Shared location, optionally with its photos."""
    id: int
    place_id: str
    name: str
    address: Optional[str] = None
    lat: float
    lng: float
    type: Optional[str] = None
    rating: Optional[float] = None

    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None

    production_date: Optional[datetime] = None
    production_notes: Optional[str] = None
    entry_point: Optional[str] = None
    parking: Optional[str] = None
    access: Optional[str] = None
    indoor_outdoor: Optional[str] = None
    operating_hours: Optional[str] = None
    restrictions: Optional[str] = None
    best_time_of_day: Optional[str] = None
    permit_required: bool = False
    permit_cost: Optional[float] = None
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None
    is_permanent: bool = False

    created_by: int
    last_modified_by: Optional[int] = None
    last_modified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    photos: list[PhotoResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class UserSaveResponse(BaseModel):
    """A user's save, optionally with the nested location."""
    id: int
    user_id: int
    location_id: int
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool
    personal_rating: Optional[int] = None
    color: Optional[str] = None
    caption: Optional[str] = None
    visibility: Visibility
    visited_at: Optional[datetime] = None
    saved_at: datetime
    location: Optional[LocationResponse] = None

    class Config:
        from_attributes = True


class UserSaveDetailResponse(BaseModel):
    user_save: UserSaveResponse


class UserSavesListResponse(BaseModel):
    saves: list[UserSaveResponse]
    total: int


class PublicUserResponse(BaseModel):
    id: int
    username: Optional[str] = None
    display_name: Optional[str] = None


class PublicLocationResponse(BaseModel):
    """A public save flattened onto its location, for map and grid views."""
    id: int = Field(description="Location id")
    user_save_id: int
    place_id: str
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    lat: float
    lng: float
    type: Optional[str] = None
    indoor_outdoor: Optional[str] = None
    rating: Optional[int] = Field(default=None, description="The owner's personal rating")
    caption: Optional[str] = None
    saved_at: datetime
    photo_url: Optional[str] = Field(default=None, description="Primary photo, if any")
    user: PublicUserResponse


class PublicLocationsResponse(BaseModel):
    locations: list[PublicLocationResponse]
    total: int
    limit: int = Field(description="Effective page size after capping")
    has_more: bool


class LocationUpdateRequest(BaseModel):
    """
    Partial update of a location, the caller's own save of it, and its photos.
    Only fields present in the request body are written.
    """
    # Basic info
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    type: Optional[str] = Field(default=None, max_length=50)
    rating: Optional[float] = Field(default=None, ge=0, le=5)

    # Address components
    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None

    # Production details
    production_date: Optional[datetime] = None
    production_notes: Optional[str] = None
    entry_point: Optional[str] = None
    parking: Optional[str] = None
    access: Optional[str] = None
    indoor_outdoor: Optional[str] = None
    operating_hours: Optional[str] = None
    restrictions: Optional[str] = None
    best_time_of_day: Optional[str] = None
    permit_required: Optional[bool] = None
    permit_cost: Optional[float] = Field(default=None, ge=0)
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None
    is_permanent: Optional[bool] = None

    # Caller's own save
    tags: Optional[list[str]] = None
    is_favorite: Optional[bool] = None
    personal_rating: Optional[int] = Field(default=None, ge=1, le=5)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    photos: Optional[list[PhotoEntry]] = None

    @model_validator(mode="after")
    def check_non_nullable(self) -> "LocationUpdateRequest":
        _reject_explicit_nulls(
            self, ("name", "permit_required", "is_permanent", "tags", "is_favorite", "photos")
        )
        return self


class LocationUpdateResponse(BaseModel):
    location: LocationResponse
    user_save: Optional[UserSaveResponse] = None


class SaveLocationRequest(BaseModel):
    """Save a place; creates the shared location if nobody has saved it yet."""
    place_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    type: Optional[str] = Field(default=None, max_length=50)
    rating: Optional[float] = Field(default=None, ge=0, le=5)

    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None

    production_notes: Optional[str] = None
    entry_point: Optional[str] = None
    parking: Optional[str] = None
    access: Optional[str] = None
    indoor_outdoor: Optional[str] = None
    is_permanent: bool = False

    # Personal annotation
    caption: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False
    personal_rating: Optional[int] = Field(default=None, ge=1, le=5)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    visibility: Visibility = Visibility.PRIVATE

    class Config:
        json_schema_extra = {
            "example": {
                "place_id": "ChIJD7fiBh9u5kcRYJSMaMOCCwQ",
                "name": "Pont Alexandre III",
                "address": "Pont Alexandre III, 75008 Paris, France",
                "lat": 48.8639,
                "lng": 2.3136,
                "type": "bridge",
                "tags": ["night", "exterior"],
                "color": "#FF5733",
            }
        }


class SaveLocationResponse(BaseModel):
    user_save: UserSaveResponse
    already_saved: bool = Field(default=False, description="True if the place was already in the user's saves")


class CaptionUpdateRequest(BaseModel):
    caption: Optional[str] = Field(default=None, max_length=500)


class VisibilityUpdateRequest(BaseModel):
    visibility: Visibility


class VisibilityResponse(BaseModel):
    success: bool
    visibility: Visibility


class DeleteSaveResponse(BaseModel):
    message: str
    deleted: DeletionSummary


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
