"""Schemas for comparing the findings of two scans."""

from datetime import datetime

from pydantic import BaseModel, Field


class FindingOut(BaseModel):
    """Persisted finding as returned in a comparison."""

    id: int
    scan_id: int
    title: str
    category: str
    severity: str
    cwe: str | None = None
    description: str = ""
    evidence: dict | None = None

    class Config:
        from_attributes = True


class InlineFinding(BaseModel):
    """A finding supplied in the request body (no persistence)."""

    title: str = Field(..., min_length=1, max_length=1024)
    category: str = Field(default="", max_length=255)
    severity: str = Field(..., min_length=1, max_length=32)
    cwe: str | None = Field(default=None, max_length=64)
    description: str = ""


class ScanSummary(BaseModel):
    """Scan metadata shown next to a comparison."""

    id: int
    project_name: str
    status: str
    repository_url: str | None = None
    repository_branch: str | None = None
    repository_commit_hash: str | None = None
    findings_count: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class ComparisonSummary(BaseModel):
    total_common: int = Field(..., ge=0)
    total_only_in_a: int = Field(..., ge=0)
    total_only_in_b: int = Field(..., ge=0)


class SecurityDeltaOut(BaseModel):
    """count(only in A) - count(only in B); positive means net improvement in B."""

    total_delta: int
    critical_delta: int
    high_delta: int
    medium_delta: int
    low_delta: int
    info_delta: int


class ScanComparisonResponse(BaseModel):
    """Response for GET /scans/compare."""

    scan_a: ScanSummary
    scan_b: ScanSummary
    common_findings: list[FindingOut]
    only_in_scan_a: list[FindingOut]
    only_in_scan_b: list[FindingOut]
    summary: ComparisonSummary
    delta: SecurityDeltaOut


class InlineComparisonRequest(BaseModel):
    """Body for POST /scans/compare."""

    findings_a: list[InlineFinding] = Field(default_factory=list)
    findings_b: list[InlineFinding] = Field(default_factory=list)


class InlineComparisonResponse(BaseModel):
    """Response for POST /scans/compare."""

    common_findings: list[InlineFinding]
    only_in_scan_a: list[InlineFinding]
    only_in_scan_b: list[InlineFinding]
    summary: ComparisonSummary
    delta: SecurityDeltaOut
