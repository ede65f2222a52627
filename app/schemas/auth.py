"""Auth schemas: login, issued tokens and the organization-scoped caller."""

from pydantic import BaseModel, Field

from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class TokenResponse(BaseModel):
    """Bearer token for the Authorization header; valid only within organization_id."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., ge=1, description="Seconds until the token expires")
    organization_id: str


class CurrentUser(BaseModel):
    """
    The caller as seen by route dependencies. Every credential and scan lookup is filtered by
    organization_id.
    """

    id: int
    username: str
    role: str
    organization_id: str

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserListItem(CurrentUser):
    """User entry for the admin listing (no password hash)."""


class UsersListResponse(BaseModel):
    users: list[UserListItem]
