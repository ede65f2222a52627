"""JWT login and the caller dependencies (get_current_user, require_admin)."""

import logging
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import (
    access_token_ttl,
    create_access_token,
    decode_access_token,
    verify_password,
)
from app.models.user import User
from app.schemas.auth import (
    CurrentUser,
    LoginRequest,
    TokenResponse,
    UserListItem,
    UsersListResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)

# Synthetic user returned when AUTH_ENABLED is false; not a row in users.
DEV_USER_ID = 0
DEV_USERNAME = "dev"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def actor_id(user: CurrentUser) -> int | None:
    """users.id of the caller for audit columns; None for the synthetic dev user."""
    return None if user.id == DEV_USER_ID else user.id


@router.post("", response_model=TokenResponse)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
) -> TokenResponse:
    """
    Exchange username and password for a bearer token scoped to the user's organization.
    Send it as: Authorization: Bearer <access_token>
    """
    user = db.query(User).filter(User.username == body.username).first()
    if user is None or not verify_password(body.password, user.password_hash):
        raise _unauthorized("Invalid username or password.")
    token = create_access_token(
        sub=user.id, role=user.role, organization_id=user.organization_id
    )
    return TokenResponse(
        access_token=token,
        expires_in=int(access_token_ttl().total_seconds()),
        organization_id=user.organization_id,
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> CurrentUser:
    """
    Resolve the bearer token to a user. 401 when the token is missing, invalid, expired, or
    was issued for an organization the user no longer belongs to.
    With AUTH_ENABLED=false every request runs as an admin of DEV_ORGANIZATION_ID.
    """
    settings = get_settings()
    if not settings.AUTH_ENABLED:
        return CurrentUser(
            id=DEV_USER_ID,
            username=DEV_USERNAME,
            role="admin",
            organization_id=settings.DEV_ORGANIZATION_ID,
        )
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise _unauthorized("Invalid or expired token")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token payload")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")
    if payload["org"] != user.organization_id:
        logger.warning(
            "Token organization mismatch",
            extra={"user_id": user.id, "token_org": payload["org"]},
        )
        raise _unauthorized("Invalid or expired token")
    return CurrentUser.model_validate(user)


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """403 unless the caller is an admin of their organization."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


@router.get("/users", response_model=UsersListResponse)
def list_users(
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """Users of the admin's organization."""
    users = (
        db.query(User)
        .filter(User.organization_id == admin.organization_id)
        .order_by(User.id)
        .all()
    )
    return UsersListResponse(users=[UserListItem.model_validate(u) for u in users])
