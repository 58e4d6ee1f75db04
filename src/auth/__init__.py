"""
Authentication module for the Location Sharing backend.
Provides JWT bearer auth and the capability checks for shared locations.
"""
from src.auth.models import UserModel
from src.auth.dependencies import get_current_user
from src.auth.jwt import create_access_token, verify_token
from src.auth.permissions import (
    can_edit_location,
    can_delete_user_save,
    can_view_user_save,
    can_update_user_save,
    can_delete_photo,
)

__all__ = [
    # Models
    "UserModel",
    # Dependencies
    "get_current_user",
    # JWT
    "create_access_token",
    "verify_token",
    # Permissions
    "can_edit_location",
    "can_delete_user_save",
    "can_view_user_save",
    "can_update_user_save",
    "can_delete_photo",
]
