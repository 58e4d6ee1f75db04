"""
Capability checks for shared locations, personal saves and photos.

Locations and photos are shared state guarded by these predicates; a
UserSave is private to its owner and only the strict ownership check applies.
"""
from src.auth.models import UserModel
from src.infrastructure.models import LocationModel, UserSaveModel, PhotoModel


def can_edit_location(user: UserModel, location: LocationModel) -> bool:
    """Only the creator or an elevated role can edit location details."""
    return user.id == location.created_by or user.is_elevated


def can_delete_user_save(user: UserModel, user_save: UserSaveModel) -> bool:
    """Only the user who saved the location can remove it, admins included."""
    return user.id == user_save.user_id


def can_view_user_save(user: UserModel, user_save: UserSaveModel) -> bool:
    return user.id == user_save.user_id


def can_update_user_save(user: UserModel, user_save: UserSaveModel) -> bool:
    """Caption, visibility and personal annotations belong to the owner."""
    return user.id == user_save.user_id


def can_delete_photo(user: UserModel, photo: PhotoModel, location: LocationModel) -> bool:
    """The uploader, or anyone allowed to edit the location."""
    return user.id == photo.user_id or can_edit_location(user, location)
