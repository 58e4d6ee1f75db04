"""
SQLAlchemy ORM models for database tables.
These are separate from API schemas to maintain clean architecture.
"""
from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    JSON,
    Float,
    Boolean,
    Text,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from datetime import datetime

from src.infrastructure.database import Base


class LocationModel(Base):
    """
    A physical place, shared by every user who saved it.
    Deleted only through the creator's last-save cascade or the orphan sweep.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    place_id = Column(String, nullable=False, unique=True, index=True)  # e.g. Google place_id
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    type = Column(String, nullable=True)
    rating = Column(Float, nullable=True)

    # Detailed address components
    street = Column(String, nullable=True)
    number = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zipcode = Column(String, nullable=True)

    # Production & logistics
    production_date = Column(DateTime, nullable=True)
    production_notes = Column(Text, nullable=True)
    entry_point = Column(String, nullable=True)
    parking = Column(String, nullable=True)
    access = Column(String, nullable=True)
    indoor_outdoor = Column(String, nullable=True)
    operating_hours = Column(String, nullable=True)
    restrictions = Column(Text, nullable=True)
    best_time_of_day = Column(String, nullable=True)
    permit_required = Column(Boolean, nullable=False, default=False)
    permit_cost = Column(Float, nullable=True)
    contact_person = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    is_permanent = Column(Boolean, nullable=False, default=False)

    # Audit trail
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    last_modified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_modified_at = Column(DateTime, nullable=True)

    # Set when the last save is removed by someone other than the creator
    orphaned_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class UserSaveModel(Base):
    """A user's private reference to a shared location."""
    __tablename__ = "user_saves"

    # One save per user per location
    __table_args__ = (
        UniqueConstraint("user_id", "location_id", name="uq_user_saves_user_location"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)

    # Organization & filtering
    tags = Column(JSON, nullable=False, default=list)
    is_favorite = Column(Boolean, nullable=False, default=False)
    color = Column(String, nullable=True)  # Hex color like "#FF5733"

    # Personal tracking
    personal_rating = Column(Integer, nullable=True)  # 1-5 stars
    visited_at = Column(DateTime, nullable=True)
    caption = Column(Text, nullable=True)
    visibility = Column(String, nullable=False, default="private")

    saved_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PhotoModel(Base):
    """
    Photo metadata; the binary lives in the blob store under file_id.

    location_id is the authoritative link. place_id is a lookup copy of the
    parent's place_id, written only by the store and kept in step by the
    ON UPDATE CASCADE foreign key.
    """
    __tablename__ = "photos"

    __table_args__ = (
        Index("ix_photos_place_id_uploaded_at", "place_id", "uploaded_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)
    place_id = Column(
        String,
        ForeignKey("locations.place_id", onupdate="CASCADE", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Blob store identifiers
    file_id = Column(String, nullable=False, index=True)
    file_path = Column(String, nullable=False)

    original_filename = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    is_primary = Column(Boolean, nullable=False, default=False)
    caption = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class UserSaveTombstoneModel(Base):
    """
    Record of a removed save, so that repeating a delete is a no-op for its owner.
    No foreign keys: the location may be gone too.
    """
    __tablename__ = "user_save_tombstones"

    user_save_id = Column(Integer, primary_key=True, autoincrement=False)
    user_id = Column(Integer, nullable=False, index=True)
    location_id = Column(Integer, nullable=False)
    cascaded = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PendingBlobDeletionModel(Base):
    """Blob deletions that failed and are waiting for reconciliation."""
    __tablename__ = "pending_blob_deletions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String, nullable=False, unique=True)
    photo_id = Column(Integer, nullable=True)
    location_id = Column(Integer, nullable=True)

    attempts = Column(Integer, nullable=False, default=1)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
