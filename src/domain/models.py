"""
Core domain models for the Location Sharing backend.
"""
from enum import Enum
from pydantic import BaseModel, Field, model_validator


class Visibility(str, Enum):
    """Who can see a user's save of a location."""
    PUBLIC = "public"
    PRIVATE = "private"
    FOLLOWERS = "followers"


class OrphanPolicy(str, Enum):
    """What the orphan sweep does with locations nobody references."""
    RETAIN = "retain"
    SWEEP = "sweep"


class MapBounds(BaseModel):
    """
    Map viewport. A west edge greater than the east edge means the box
    crosses the antimeridian.
    """
    north: float = Field(ge=-90, le=90)
    south: float = Field(ge=-90, le=90)
    east: float = Field(ge=-180, le=180)
    west: float = Field(ge=-180, le=180)

    @model_validator(mode="after")
    def check_latitudes(self) -> "MapBounds":
        if self.south > self.north:
            raise ValueError("south must not be greater than north")
        return self


# Location columns a PATCH may touch. place_id and coordinates identify the place and stay fixed.
LOCATION_PATCH_FIELDS = frozenset({
    "name",
    "address",
    "type",
    "rating",
    "street",
    "number",
    "city",
    "state",
    "zipcode",
    "production_date",
    "production_notes",
    "entry_point",
    "parking",
    "access",
    "indoor_outdoor",
    "operating_hours",
    "restrictions",
    "best_time_of_day",
    "permit_required",
    "permit_cost",
    "contact_person",
    "contact_phone",
    "is_permanent",
})

# UserSave columns owned by the saving user
USER_SAVE_PATCH_FIELDS = frozenset({
    "tags",
    "is_favorite",
    "personal_rating",
    "color",
    "caption",
    "visibility",
})

# Subset carried by the composite location update
COMPOSITE_SAVE_FIELDS = frozenset({"tags", "is_favorite", "personal_rating", "color"})

# Existing photos only ever get their metadata changed
PHOTO_PATCH_FIELDS = frozenset({"caption", "is_primary"})


class DeletionSummary(BaseModel):
    """
    What a save deletion actually removed.

    location, photo_count and blob_count are only populated when the
    location itself was cascaded. blob_count counts blobs confirmed gone;
    failed_blob_ids lists the ones queued for reconciliation.
    """
    user_save: bool = Field(description="The save row was removed by this request")
    location: bool = Field(default=False, description="The shared location was destroyed")
    photo_count: int = Field(default=0, description="Photo rows removed with the location")
    blob_count: int = Field(default=0, description="Blobs confirmed deleted from storage")
    failed_blob_ids: list[str] = Field(default_factory=list, description="Blob ids left for reconciliation")
    orphaned: bool = Field(default=False, description="The location is left with no saves")
    already_deleted: bool = Field(default=False, description="Repeat of an earlier delete; nothing changed")

    @property
    def message(self) -> str:
        if self.already_deleted:
            return "Location was already removed from your saves"
        if self.location:
            if self.failed_blob_ids:
                return "Location deleted; some photo files are queued for cleanup"
            return "Location and all associated photos deleted successfully"
        if self.orphaned:
            return "Location removed from your saves; it is no longer saved by anyone"
        return "Location removed from your saves"
