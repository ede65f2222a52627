"""Pydantic request/response schemas."""

from app.schemas.comparison import (
    InlineComparisonRequest,
    InlineComparisonResponse,
    ScanComparisonResponse,
)
from app.schemas.credentials import (
    CredentialCreateRequest,
    CredentialResponse,
    CredentialUpdateRequest,
    ValidateCredentialRequest,
)
from app.schemas.findings import SeverityLevel
from app.schemas.health import HealthResponse
from app.schemas.projects import ProjectCreateRequest, ProjectOut, ProjectUpdateRequest
from app.schemas.repository import (
    CleanupResult,
    CloneOutcome,
    CodeLocation,
    CredentialType,
    RepositoryReference,
    ValidationOutcome,
)
from app.schemas.scans import FindingsSubmission, ScanCreateRequest, ScanListResponse, ScanOut

__all__ = [
    "CleanupResult",
    "CloneOutcome",
    "CodeLocation",
    "CredentialCreateRequest",
    "CredentialResponse",
    "CredentialType",
    "CredentialUpdateRequest",
    "FindingsSubmission",
    "HealthResponse",
    "InlineComparisonRequest",
    "InlineComparisonResponse",
    "ProjectCreateRequest",
    "ProjectOut",
    "ProjectUpdateRequest",
    "RepositoryReference",
    "ScanComparisonResponse",
    "ScanCreateRequest",
    "ScanListResponse",
    "ScanOut",
    "SeverityLevel",
    "ValidateCredentialRequest",
    "ValidationOutcome",
]
