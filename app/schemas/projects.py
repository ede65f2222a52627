"""Request/response schemas for project endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=10000)
    default_repository_url: str | None = Field(
        default=None,
        max_length=2048,
        description="HTTPS or git@ URL scanned when a scan request names no repository.",
    )
    default_repository_branch: str | None = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must be non-empty")
        return v


class ProjectUpdateRequest(BaseModel):
    """
    Partial update; omitted fields are unchanged. null (or an empty branch) clears a
    default repository setting.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10000)
    default_repository_url: str | None = Field(default=None, max_length=2048)
    default_repository_branch: str | None = Field(default=None, max_length=255)


class ProjectOut(BaseModel):
    id: int
    organization_id: str
    name: str
    description: str = ""
    default_repository_url: str | None = None
    default_repository_branch: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class ProjectListResponse(BaseModel):
    projects: list[ProjectOut]
