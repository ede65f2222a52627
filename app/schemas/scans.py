"""Request/response schemas for starting, listing and completing scans."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.comparison import InlineFinding, ScanSummary


class ScanCreateRequest(BaseModel):
    """
    Start a scan of a project. Repository fields override the project's defaults; the branch
    falls back to "main" when neither names one.
    """

    project_id: int = Field(..., ge=1)
    repository_url: str | None = Field(default=None, max_length=2048)
    repository_branch: str | None = Field(default=None, max_length=255)
    repository_commit_hash: str | None = Field(
        default=None, max_length=40, description="Full 40-character SHA to pin."
    )


class ScanOut(ScanSummary):
    project_id: int | None = None
    started_at: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None


class ScanListResponse(BaseModel):
    scans: list[ScanOut]
    next_cursor: int | None = Field(
        default=None, description="Pass as cursor to fetch the next page; null on the last page."
    )
    total: int = Field(..., ge=0, description="Scans matching the filters, across all pages.")


class ScanFindingIn(InlineFinding):
    """A finding reported by the scanner. file_path and line_number locate it in the checkout."""

    evidence: dict[str, Any] | None = None
    file_path: str | None = Field(default=None, min_length=1, max_length=4096)
    line_number: int | None = Field(default=None, ge=1)


class FindingsSubmission(BaseModel):
    """Body for POST /scans/{scan_id}/findings; completes the scan."""

    findings: list[ScanFindingIn] = Field(default_factory=list)
