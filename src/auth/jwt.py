"""
JWT token utilities for creating and verifying access tokens.

Tokens are issued by the upstream identity service; this module only needs
to verify them, but creation is kept for tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import jwt

from src.auth.config import auth_settings


class TokenError(Exception):
    """Base exception for token-related errors."""
    pass


class TokenExpiredError(TokenError):
    """Token has expired."""
    pass


class TokenInvalidError(TokenError):
    """Token is invalid or malformed."""
    pass


def create_access_token(
    user_id: int,
    additional_claims: Optional[Dict[str, Any]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create an access token for API authentication.

    Args:
        user_id: The user's numeric id
        additional_claims: Optional additional claims to include in token
        expires_delta: Override for the configured lifetime

    Returns:
        Encoded JWT access token string
    """
    now = datetime.now(timezone.utc)
    expires = now + (expires_delta or timedelta(minutes=auth_settings.access_token_expire_minutes))

    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": expires,
    }

    if additional_claims:
        payload.update(additional_claims)

    return jwt.encode(
        payload,
        auth_settings.jwt_secret_key,
        algorithm=auth_settings.jwt_algorithm
    )


def verify_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is invalid or wrong type
    """
    try:
        payload = jwt.decode(
            token,
            auth_settings.jwt_secret_key,
            algorithms=[auth_settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenInvalidError(f"Invalid token: {str(e)}")

    if payload.get("type") != expected_type:
        raise TokenInvalidError(f"Expected {expected_type} token, got {payload.get('type')}")

    return payload


def user_id_from_payload(payload: Dict[str, Any]) -> int:
    """Extract the numeric user id from the `sub` claim."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenInvalidError("Token subject is not a user id")
