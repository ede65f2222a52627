"""Pydantic schemas for repository access: validation, clone and cleanup outcomes, code locations."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.services.repo_url import normalize_repo_url

CredentialType = Literal["PAT", "SSH"]

ValidationStatus = Literal["valid", "invalid", "untested"]

ValidationErrorType = Literal[
    "AUTH_FAILED",
    "NOT_FOUND",
    "NETWORK_ERROR",
    "REPO_TOO_LARGE",
    "VALIDATION_TIMEOUT",
    "UNKNOWN",
]

CloneErrorType = Literal[
    "AUTHENTICATION",
    "NETWORK",
    "INVALID_URL",
    "TIMEOUT",
    "REPOSITORY_NOT_FOUND",
    "UNKNOWN",
]


class RepositoryReference(BaseModel):
    """A repository location to scan: URL (normalized), branch, optional pinned commit."""

    url: str = Field(..., min_length=1, description="Repository URL (HTTPS or SSH form).")
    branch: str = Field(default="main", min_length=1, description="Branch to check out.")
    commit_hash: str | None = Field(
        default=None,
        description="Full 40-character commit SHA to pin; HEAD of branch when omitted.",
    )

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        normalized = normalize_repo_url(v)
        if not normalized:
            raise ValueError("url must be non-empty")
        return normalized

    @field_validator("branch")
    @classmethod
    def strip_branch(cls, v: str) -> str:
        return v.strip()


class ValidationOutcome(BaseModel):
    """Result of a non-destructive remote access check (git ls-remote)."""

    valid: bool = Field(..., description="True when the remote accepted the credential.")
    error: ValidationErrorType | None = Field(
        default=None, description="Failure category when valid is false."
    )
    error_message: str | None = Field(
        default=None, description="User-facing message; never contains credential material."
    )
    branches: list[str] | None = Field(
        default=None, description="Branch names advertised by the remote."
    )
    default_branch: str | None = Field(
        default=None,
        description="First of main/master/develop present, else the first branch.",
    )
    estimated_size: int | None = Field(
        default=None, ge=0, description="Estimated repository size in bytes."
    )
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock time of the check.")


class CloneOutcome(BaseModel):
    """Result of a shallow clone into a working directory."""

    success: bool
    repo_path: str | None = Field(default=None, description="Cloned working tree on success.")
    commit_hash: str | None = Field(default=None, description="Resolved HEAD commit.")
    branch: str | None = Field(default=None, description="Checked-out branch (HEAD when detached).")
    error_type: CloneErrorType | None = None
    error: str | None = Field(default=None, description="Redacted failure message.")
    duration_ms: int = Field(default=0, ge=0)


class CleanupResult(BaseModel):
    """Result of removing a cloned working tree."""

    success: bool
    error: str | None = None
    deleted_path: str | None = None
    duration_ms: int = Field(default=0, ge=0)


class CodeLocation(BaseModel):
    """Source excerpt around a finding's line, stored in the finding's evidence."""

    file_path: str = Field(..., description="Path relative to the repository root.")
    line_number: int = Field(..., ge=1, description="Reported line (clamped to the file length).")
    code_snippet: str = Field(..., description="Lines start_line..end_line joined with newlines.")
    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    repository_url: str
    commit_hash: str
    branch: str | None = None
