"""
Tests for the location lifecycle service: reads, composite updates and
cascading deletes of saves.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from src.application.location_lifecycle import LocationLifecycleManager
from src.domain.errors import (
    LocationNotFoundError,
    UserSaveNotFoundError,
    PhotoNotFoundError,
    PermissionDeniedError,
    InternalError,
)
from src.domain.schemas import LocationUpdateRequest, SaveLocationRequest
from src.infrastructure.location_store import LocationStore
from src.infrastructure.models import (
    LocationModel,
    UserSaveModel,
    PhotoModel,
    UserSaveTombstoneModel,
    PendingBlobDeletionModel,
)


AUDIT_FIELDS = {"last_modified_by", "last_modified_at", "updated_at"}


def _column_values(row) -> dict:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


@pytest.fixture
def manager(db, blob_store):
    return LocationLifecycleManager(db, blob_store=blob_store)


@pytest.fixture
async def shared_location(seed, creator, other_user):
    """Created by alice, saved by alice and bob, three photos."""
    location = await seed.location(creator)
    creator_save = await seed.save(creator, location, tags=["night"], color="#112233")
    other_save = await seed.save(other_user, location)
    base = datetime(2026, 5, 1, 12, 0)
    photos = [
        await seed.photo(location, creator, "file-a", uploaded_at=base, is_primary=True),
        await seed.photo(location, creator, "file-b", uploaded_at=base + timedelta(hours=1)),
        await seed.photo(location, other_user, "file-c", uploaded_at=base + timedelta(hours=2)),
    ]
    return location, creator_save, other_save, photos


class TestGetUserSave:
    """Tests for reading a save."""

    @pytest.mark.asyncio
    async def test_returns_location_and_photos_newest_first(self, manager, creator, shared_location):
        location, creator_save, _, _ = shared_location

        context = await manager.get_user_save(creator, creator_save.id)

        assert context.user_save.id == creator_save.id
        assert context.location.id == location.id
        assert [photo.file_id for photo in context.photos] == ["file-c", "file-b", "file-a"]
        assert len(context.siblings) == 2

    @pytest.mark.asyncio
    async def test_missing_save(self, manager, creator):
        with pytest.raises(UserSaveNotFoundError):
            await manager.get_user_save(creator, 9999)

    @pytest.mark.asyncio
    async def test_other_users_save_is_denied_even_for_staff(self, manager, staffer, shared_location):
        _, creator_save, _, _ = shared_location

        with pytest.raises(PermissionDeniedError):
            await manager.get_user_save(staffer, creator_save.id)


class TestDeleteUserSave:
    """Tests for the detach / cascade decision."""

    @pytest.mark.asyncio
    async def test_non_creator_delete_detaches(
        self, manager, other_user, shared_location, blob_store, count_rows
    ):
        """Bob removes their save; the location keeps alice's save and all photos."""
        location, _, other_save, _ = shared_location

        summary = await manager.delete_user_save(other_user, other_save.id)

        assert summary.user_save is True
        assert summary.location is False
        assert summary.photo_count == 0
        assert summary.blob_count == 0
        assert summary.orphaned is False
        assert summary.message == "Location removed from your saves"

        assert await count_rows(LocationModel, LocationModel.id == location.id) == 1
        assert await count_rows(UserSaveModel, UserSaveModel.location_id == location.id) == 1
        assert await count_rows(PhotoModel, PhotoModel.location_id == location.id) == 3
        assert blob_store.calls == []

    @pytest.mark.asyncio
    async def test_creator_delete_with_other_saves_detaches(
        self, manager, creator, shared_location, blob_store, count_rows
    ):
        """Creatorship alone does not destroy a location someone else still references."""
        location, creator_save, _, _ = shared_location

        summary = await manager.delete_user_save(creator, creator_save.id)

        assert summary.user_save is True
        assert summary.location is False
        assert await count_rows(LocationModel, LocationModel.id == location.id) == 1
        assert await count_rows(UserSaveModel, UserSaveModel.location_id == location.id) == 1
        assert await count_rows(PhotoModel, PhotoModel.location_id == location.id) == 3
        assert blob_store.calls == []

    @pytest.mark.asyncio
    async def test_creator_last_save_cascades(
        self, manager, creator, other_user, shared_location, blob_store, count_rows
    ):
        """After bob detaches, alice's delete removes everything."""
        location, creator_save, other_save, _ = shared_location
        await manager.delete_user_save(other_user, other_save.id)

        summary = await manager.delete_user_save(creator, creator_save.id)

        assert summary.user_save is True
        assert summary.location is True
        assert summary.photo_count == 3
        assert summary.blob_count == 3
        assert summary.failed_blob_ids == []
        assert summary.message == "Location and all associated photos deleted successfully"

        assert await count_rows(LocationModel, LocationModel.id == location.id) == 0
        assert await count_rows(PhotoModel, PhotoModel.place_id == location.place_id) == 0
        assert await count_rows(UserSaveModel, UserSaveModel.location_id == location.id) == 0
        assert sorted(blob_store.calls) == ["file-a", "file-b", "file-c"]

    @pytest.mark.asyncio
    async def test_cascade_without_photos(self, manager, seed, creator, blob_store, count_rows):
        """Sole save by the creator, no photos."""
        location = await seed.location(creator)
        user_save = await seed.save(creator, location)

        summary = await manager.delete_user_save(creator, user_save.id)

        assert summary.location is True
        assert summary.photo_count == 0
        assert summary.blob_count == 0
        assert blob_store.calls == []
        assert await count_rows(LocationModel, LocationModel.id == location.id) == 0

    @pytest.mark.asyncio
    async def test_non_creator_last_save_orphans_location(
        self, manager, seed, creator, other_user, blob_store, count_rows, fetch_one
    ):
        """The creator never saved it; bob's delete leaves it unreferenced."""
        location = await seed.location(creator)
        other_save = await seed.save(other_user, location)
        await seed.photo(location, other_user, "file-d")
        before = _column_values(await fetch_one(LocationModel, LocationModel.id == location.id))

        summary = await manager.delete_user_save(other_user, other_save.id)

        assert summary.user_save is True
        assert summary.location is False
        assert summary.orphaned is True
        assert summary.message == "Location removed from your saves; it is no longer saved by anyone"

        remaining = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert remaining is not None
        assert remaining.orphaned_at is not None
        after = _column_values(remaining)
        before.pop("orphaned_at")
        after.pop("orphaned_at")
        assert after == before
        assert await count_rows(PhotoModel, PhotoModel.location_id == location.id) == 1
        assert await count_rows(UserSaveModel, UserSaveModel.id == other_save.id) == 0
        assert blob_store.calls == []

    @pytest.mark.asyncio
    async def test_owner_only_even_for_staff(self, manager, staffer, shared_location, count_rows):
        _, creator_save, _, _ = shared_location

        with pytest.raises(PermissionDeniedError):
            await manager.delete_user_save(staffer, creator_save.id)

        assert await count_rows(UserSaveModel, UserSaveModel.id == creator_save.id) == 1

    @pytest.mark.asyncio
    async def test_other_user_cannot_delete(self, manager, other_user, shared_location, count_rows):
        _, creator_save, _, _ = shared_location

        with pytest.raises(PermissionDeniedError):
            await manager.delete_user_save(other_user, creator_save.id)

        assert await count_rows(UserSaveModel, UserSaveModel.id == creator_save.id) == 1

    @pytest.mark.asyncio
    async def test_missing_save(self, manager, creator):
        with pytest.raises(UserSaveNotFoundError):
            await manager.delete_user_save(creator, 424242)

    @pytest.mark.asyncio
    async def test_repeat_delete_is_noop_for_owner(self, manager, seed, creator, blob_store, fetch_one):
        location = await seed.location(creator)
        user_save = await seed.save(creator, location)
        await seed.photo(location, creator, "file-x")

        first = await manager.delete_user_save(creator, user_save.id)
        second = await manager.delete_user_save(creator, user_save.id)

        assert first.location is True
        assert second.already_deleted is True
        assert second.user_save is False
        assert second.location is False
        assert second.message == "Location was already removed from your saves"
        assert blob_store.calls == ["file-x"]

        tombstone = await fetch_one(UserSaveTombstoneModel, UserSaveTombstoneModel.user_save_id == user_save.id)
        assert tombstone.cascaded is True
        assert tombstone.user_id == creator.id

    @pytest.mark.asyncio
    async def test_repeat_delete_after_detach_is_noop(self, manager, other_user, shared_location):
        _, _, other_save, _ = shared_location

        await manager.delete_user_save(other_user, other_save.id)
        second = await manager.delete_user_save(other_user, other_save.id)

        assert second.already_deleted is True

    @pytest.mark.asyncio
    async def test_deleted_save_of_someone_else_is_not_found(
        self, manager, other_user, staffer, shared_location
    ):
        _, _, other_save, _ = shared_location
        await manager.delete_user_save(other_user, other_save.id)

        with pytest.raises(UserSaveNotFoundError):
            await manager.delete_user_save(staffer, other_save.id)

    @pytest.mark.asyncio
    async def test_blob_failures_do_not_fail_the_delete(
        self, manager, seed, creator, blob_store, count_rows, fetch_one
    ):
        location = await seed.location(creator)
        user_save = await seed.save(creator, location)
        await seed.photo(location, creator, "file-ok")
        await seed.photo(location, creator, "file-broken")
        blob_store.failing.add("file-broken")

        summary = await manager.delete_user_save(creator, user_save.id)

        assert summary.location is True
        assert summary.photo_count == 2
        assert summary.blob_count == 1
        assert summary.failed_blob_ids == ["file-broken"]
        assert summary.message == "Location deleted; some photo files are queued for cleanup"
        assert sorted(blob_store.calls) == ["file-broken", "file-ok"]

        assert await count_rows(LocationModel, LocationModel.id == location.id) == 0
        pending = await fetch_one(PendingBlobDeletionModel, PendingBlobDeletionModel.file_id == "file-broken")
        assert pending is not None
        assert pending.location_id == location.id
        assert pending.last_error == "http 500"

    @pytest.mark.asyncio
    async def test_blob_already_absent_counts_as_deleted(self, manager, seed, creator, blob_store):
        location = await seed.location(creator)
        user_save = await seed.save(creator, location)
        await seed.photo(location, creator, "file-gone")
        blob_store.absent.add("file-gone")

        summary = await manager.delete_user_save(creator, user_save.id)

        assert summary.blob_count == 1
        assert summary.failed_blob_ids == []

    @pytest.mark.asyncio
    async def test_location_deleted_concurrently_is_success(self, manager, seed, creator, blob_store):
        location = await seed.location(creator)
        user_save = await seed.save(creator, location)
        await seed.photo(location, creator, "file-race")

        with patch.object(LocationStore, "delete_location_cascade", AsyncMock(return_value=False)):
            summary = await manager.delete_user_save(creator, user_save.id)

        assert summary.user_save is True
        assert summary.location is True
        assert blob_store.calls == []

    @pytest.mark.asyncio
    async def test_save_detached_concurrently_reports_nothing_removed(
        self, manager, other_user, shared_location, count_rows, fetch_one
    ):
        location, _, other_save, _ = shared_location

        with patch.object(LocationStore, "delete_user_save", AsyncMock(return_value=False)):
            summary = await manager.delete_user_save(other_user, other_save.id)

        assert summary.user_save is False
        assert summary.already_deleted is True
        assert summary.orphaned is False
        assert await count_rows(UserSaveTombstoneModel) == 0
        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.orphaned_at is None


class TestUpdateLocation:
    """Tests for the composite update."""

    @pytest.mark.asyncio
    async def test_tags_only_leaves_everything_else_untouched(
        self, manager, creator, shared_location, fetch_one
    ):
        location, creator_save, _, _ = shared_location
        before_location = _column_values(await fetch_one(LocationModel, LocationModel.id == location.id))
        before_save = _column_values(await fetch_one(UserSaveModel, UserSaveModel.id == creator_save.id))

        request = LocationUpdateRequest(tags=["day", "bridge"])
        result = await manager.update_location(creator, location.id, request)

        after_location = _column_values(await fetch_one(LocationModel, LocationModel.id == location.id))
        after_save = _column_values(await fetch_one(UserSaveModel, UserSaveModel.id == creator_save.id))

        assert after_save["tags"] == ["day", "bridge"]
        assert {k: v for k, v in after_save.items() if k != "tags"} == {
            k: v for k, v in before_save.items() if k != "tags"
        }
        assert {k: v for k, v in after_location.items() if k not in AUDIT_FIELDS} == {
            k: v for k, v in before_location.items() if k not in AUDIT_FIELDS
        }
        assert after_location["last_modified_by"] == creator.id
        assert result.user_save.id == creator_save.id

    @pytest.mark.asyncio
    async def test_location_fields_are_merged(self, manager, creator, shared_location, fetch_one):
        location, _, _, _ = shared_location

        request = LocationUpdateRequest(parking="Street only", permit_required=True)
        result = await manager.update_location(creator, location.id, request)

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.parking == "Street only"
        assert stored.permit_required is True
        assert stored.name == "Pont Neuf"
        assert stored.last_modified_at is not None
        assert result.user_save is None
        assert [photo.file_id for photo in result.photos] == ["file-a", "file-b", "file-c"]

    @pytest.mark.asyncio
    async def test_explicit_null_clears_nullable_field(self, manager, seed, creator, fetch_one):
        location = await seed.location(creator, parking="Lot B")

        await manager.update_location(creator, location.id, LocationUpdateRequest(parking=None))

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.parking is None

    @pytest.mark.asyncio
    async def test_non_creator_cannot_edit(self, manager, other_user, shared_location, fetch_one):
        location, _, _, _ = shared_location

        with pytest.raises(PermissionDeniedError):
            await manager.update_location(other_user, location.id, LocationUpdateRequest(name="Mine now"))

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.name == "Pont Neuf"

    @pytest.mark.asyncio
    async def test_staff_can_edit_and_save_fields_are_skipped_without_save(
        self, manager, staffer, shared_location, count_rows, fetch_one
    ):
        location, _, _, _ = shared_location

        request = LocationUpdateRequest(name="Pont Neuf (north bank)", is_favorite=True)
        result = await manager.update_location(staffer, location.id, request)

        assert result.location.name == "Pont Neuf (north bank)"
        assert result.user_save is None
        assert await count_rows(UserSaveModel, UserSaveModel.user_id == staffer.id) == 0
        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.last_modified_by == staffer.id

    @pytest.mark.asyncio
    async def test_legacy_admin_flag_can_edit(self, manager, seed, shared_location):
        location, _, _, _ = shared_location
        legacy_admin = await seed.user("dave@example.com", is_admin=True)

        result = await manager.update_location(legacy_admin, location.id, LocationUpdateRequest(type="bridge"))

        assert result.location.type == "bridge"

    @pytest.mark.asyncio
    async def test_save_fields_only_touch_callers_save(
        self, manager, creator, shared_location, fetch_one
    ):
        location, _, other_save, _ = shared_location

        await manager.update_location(creator, location.id, LocationUpdateRequest(is_favorite=True, personal_rating=4))

        untouched = await fetch_one(UserSaveModel, UserSaveModel.id == other_save.id)
        assert untouched.is_favorite is False
        assert untouched.personal_rating is None

    @pytest.mark.asyncio
    async def test_missing_location(self, manager, creator):
        with pytest.raises(LocationNotFoundError):
            await manager.update_location(creator, 9999, LocationUpdateRequest(name="x"))

    @pytest.mark.asyncio
    async def test_first_photo_set_gets_a_primary(self, manager, seed, creator):
        location = await seed.location(creator)
        await seed.save(creator, location)

        request = LocationUpdateRequest(photos=[
            {"file_id": "new-1", "file_path": "/locations/new-1.jpg", "caption": "Front"},
            {"file_id": "new-2", "file_path": "/locations/new-2.jpg"},
        ])
        result = await manager.update_location(creator, location.id, request)

        assert len(result.photos) == 2
        primary = [photo for photo in result.photos if photo.is_primary]
        assert [photo.file_id for photo in primary] == ["new-1"]
        assert all(photo.place_id == location.place_id for photo in result.photos)
        assert all(photo.user_id == creator.id for photo in result.photos)
        assert result.photos[0].original_filename == "new-1.jpg"

    @pytest.mark.asyncio
    async def test_new_photos_on_existing_set_are_not_primary(self, manager, creator, shared_location):
        location, _, _, _ = shared_location

        request = LocationUpdateRequest(photos=[{"file_id": "file-d", "file_path": "/locations/file-d.jpg"}])
        result = await manager.update_location(creator, location.id, request)

        assert len(result.photos) == 4
        assert [photo.file_id for photo in result.photos if photo.is_primary] == ["file-a"]

    @pytest.mark.asyncio
    async def test_existing_photo_metadata_is_patched(self, manager, creator, shared_location):
        location, _, _, photos = shared_location

        request = LocationUpdateRequest(photos=[{"id": photos[1].id, "caption": "From the quay"}])
        result = await manager.update_location(creator, location.id, request)

        edited = next(photo for photo in result.photos if photo.id == photos[1].id)
        assert edited.caption == "From the quay"
        assert edited.file_id == "file-b"
        assert edited.is_primary is False

    @pytest.mark.asyncio
    async def test_foreign_photo_rolls_back_whole_update(
        self, manager, seed, creator, shared_location, fetch_one
    ):
        location, _, _, _ = shared_location
        elsewhere = await seed.location(creator, place_id="place-louvre", name="Louvre")
        foreign_photo = await seed.photo(elsewhere, creator, "file-louvre")

        request = LocationUpdateRequest(name="Renamed", photos=[{"id": foreign_photo.id, "caption": "nope"}])
        with pytest.raises(PhotoNotFoundError):
            await manager.update_location(creator, location.id, request)

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.name == "Pont Neuf"
        untouched = await fetch_one(PhotoModel, PhotoModel.id == foreign_photo.id)
        assert untouched.caption is None

    @pytest.mark.asyncio
    async def test_store_failure_becomes_internal_error(self, manager, creator, shared_location, fetch_one):
        location, _, _, _ = shared_location

        with patch.object(
            LocationStore, "update_user_save_fields", AsyncMock(side_effect=SQLAlchemyError("disk full"))
        ):
            with pytest.raises(InternalError):
                await manager.update_location(
                    creator, location.id, LocationUpdateRequest(name="Half written", tags=["x"])
                )

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.name == "Pont Neuf"


class TestSaveLocation:
    """Tests for saving a place."""

    @pytest.mark.asyncio
    async def test_first_save_creates_location(self, manager, creator, fetch_one):
        request = SaveLocationRequest(
            place_id="place-opera", name="Opera Garnier", lat=48.8719, lng=2.3316, tags=["interior"]
        )

        result = await manager.save_location(creator, request)

        assert result.already_saved is False
        assert result.location.created_by == creator.id
        assert result.user_save.tags == ["interior"]
        assert result.user_save.visibility == "private"
        stored = await fetch_one(LocationModel, LocationModel.place_id == "place-opera")
        assert stored.id == result.location.id

    @pytest.mark.asyncio
    async def test_second_user_shares_the_location(self, manager, creator, other_user, count_rows):
        request = SaveLocationRequest(place_id="place-opera", name="Opera Garnier", lat=48.8719, lng=2.3316)

        first = await manager.save_location(creator, request)
        second = await manager.save_location(other_user, request)

        assert second.location.id == first.location.id
        assert second.location.created_by == creator.id
        assert await count_rows(LocationModel, LocationModel.place_id == "place-opera") == 1
        assert await count_rows(UserSaveModel, UserSaveModel.location_id == first.location.id) == 2

    @pytest.mark.asyncio
    async def test_saving_twice_returns_existing(self, manager, creator):
        request = SaveLocationRequest(place_id="place-opera", name="Opera Garnier", lat=48.8719, lng=2.3316)

        first = await manager.save_location(creator, request)
        second = await manager.save_location(creator, request)

        assert second.already_saved is True
        assert second.user_save.id == first.user_save.id

    @pytest.mark.asyncio
    async def test_saving_orphan_adopts_it(self, manager, seed, creator, other_user, fetch_one):
        location = await seed.location(creator)
        other_save = await seed.save(other_user, location)
        await manager.delete_user_save(other_user, other_save.id)
        orphaned = await fetch_one(LocationModel, LocationModel.id == location.id)

        request = SaveLocationRequest(place_id=location.place_id, name="Pont Neuf", lat=48.8566, lng=2.3412)
        await manager.save_location(creator, request)

        stored = await fetch_one(LocationModel, LocationModel.id == location.id)
        assert stored.orphaned_at is None
        assert stored.updated_at == orphaned.updated_at


class TestCaptionAndVisibility:
    """Tests for owner-only save annotations."""

    @pytest.mark.asyncio
    async def test_owner_updates_caption(self, manager, creator, shared_location):
        _, creator_save, _, _ = shared_location

        user_save = await manager.update_caption(creator, creator_save.id, "Golden hour from the west")

        assert user_save.caption == "Golden hour from the west"

    @pytest.mark.asyncio
    async def test_owner_updates_visibility(self, manager, creator, shared_location, fetch_one):
        _, creator_save, _, _ = shared_location

        await manager.update_visibility(creator, creator_save.id, "public")

        stored = await fetch_one(UserSaveModel, UserSaveModel.id == creator_save.id)
        assert stored.visibility == "public"

    @pytest.mark.asyncio
    async def test_non_owner_cannot_update(self, manager, other_user, shared_location):
        _, creator_save, _, _ = shared_location

        with pytest.raises(PermissionDeniedError):
            await manager.update_caption(other_user, creator_save.id, "hijacked")

    @pytest.mark.asyncio
    async def test_missing_save(self, manager, creator):
        with pytest.raises(UserSaveNotFoundError):
            await manager.update_visibility(creator, 9999, "public")
