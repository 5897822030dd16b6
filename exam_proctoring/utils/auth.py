"""
JWT Authentication Utilities for the Proctoring Service

Tokens are issued by the identity service; this module only verifies them
and turns the payload into a request-scoped Identity.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import settings
from ..errors import AccessDenied, AuthenticationRequired
from ..models import Identity, Role


security = HTTPBearer(auto_error=False)


def decode_identity(token: str) -> Identity:
    """
    Verify an access token and build the caller identity.

    Raises:
        AuthenticationRequired: if the token is invalid, expired or not an access token
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthenticationRequired(f"Invalid token: {str(e)}")

    if payload.get("type") != "access":
        raise AuthenticationRequired("Invalid token type")

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationRequired("Invalid token payload")

    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise AuthenticationRequired("Invalid token role")

    # System identity is internal only; it is never accepted from a token.
    if role is Role.SYSTEM:
        raise AuthenticationRequired("Invalid token role")

    return Identity(user_id=str(user_id), role=role)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> Identity:
    """
    Get current caller identity from the bearer token.

    Used as a FastAPI dependency.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    return decode_identity(credentials.credentials)


def require_roles(*roles: Role) -> Callable:
    """Dependency factory that rejects callers whose role is not listed."""
    allowed = set(roles)

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed:
            raise AccessDenied("Insufficient permissions")
        return identity

    return dependency


def create_access_token(user_id: str, role: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Create an access token; used by tooling and tests."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
