"""Authentication and authorization.

Tokens are issued by the external identity service; this module only
verifies them and maps roles to permissions.
"""
from typing import Optional
import logging
import time
from datetime import timedelta
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token (service-to-service calls and tests)."""
    to_encode = data.copy()
    now = int(time.time())
    lifetime = int(expires_delta.total_seconds()) if expires_delta else 3600
    to_encode.update({"exp": now + lifetime, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token with explicit leeway on exp/iat."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> int:
    """Parse and validate JWT subject as numeric user id."""
    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        raise _credentials_error()
    return int(sub)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )
    return user


# Permission checks
class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Check if user has required permission."""
        if not check_permission(current_user, self.required_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return current_user


_TEAM_PERMISSIONS = {
    "canViewAllOrders": True,
    "canEditOrders": True,
    "canDeleteOrders": False,
    "canManageStages": False,
    "canViewProduction": True,
    "canEditProduction": True,
    "taskMoveBackward": False,
}

# Role permissions matrix
ROLE_PERMISSIONS = {
    "administrator": {
        **_TEAM_PERMISSIONS,
        "canDeleteOrders": True,
        "canManageStages": True,
        "taskMoveBackward": True,
    },
    "admin": {
        **_TEAM_PERMISSIONS,
        "canDeleteOrders": True,
        "canManageStages": True,
        "taskMoveBackward": True,
    },
    "manager": {
        **_TEAM_PERMISSIONS,
        "canManageStages": True,
        "taskMoveBackward": True,
    },
    "tecnico": dict(_TEAM_PERMISSIONS),
    "atendente": {
        **_TEAM_PERMISSIONS,
        "canEditProduction": False,
    },
    # Client dentists see and edit only their own cases.
    "user": {
        "canViewAllOrders": False,
        "canEditOrders": True,
        "canDeleteOrders": False,
        "canManageStages": False,
        "canViewProduction": False,
        "canEditProduction": False,
        "taskMoveBackward": False,
    },
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get((user.role or "").lower(), {})
    return permissions.get(permission, False)
