"""
Scan endpoints: start and list scans, record findings, and reconcile the findings of two
scans (e.g. two branches).
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.v1.auth import actor_id, get_current_user
from app.api.v1.repository_credentials import get_cipher
from app.core.config import Settings, get_settings
from app.core.crypto import CredentialDecryptionError
from app.core.database import get_db
from app.models import Finding, Scan
from app.schemas.auth import CurrentUser
from app.schemas.comparison import (
    ComparisonSummary,
    FindingOut,
    InlineComparisonRequest,
    InlineComparisonResponse,
    ScanComparisonResponse,
    ScanSummary,
    SecurityDeltaOut,
)
from app.schemas.scans import FindingsSubmission, ScanCreateRequest, ScanListResponse, ScanOut
from app.services.findings_diff import (
    FindingComparison,
    calculate_security_delta,
    findings_diff,
)
from app.services.projects import ProjectNotFoundError, get_project
from app.services.repo_cleanup import cleanup_repository
from app.services.scan_runner import (
    DEFAULT_PAGE_SIZE,
    InvalidScanRequestError,
    ScanNotFoundError,
    ScanStateError,
    complete_scan,
    create_scan,
    get_scan,
    list_scans,
    parse_status_filter,
    resolve_credential_snapshot,
    resolve_repository,
    run_scan_checkout,
)

logger = logging.getLogger(__name__)
router = APIRouter()

COMPARABLE_STATUS = "COMPLETED"
# Upper bound on findings per side of an inline comparison and per scan submission.
MAX_INLINE_FINDINGS = 10000


def _summary(comparison: FindingComparison) -> ComparisonSummary:
    return ComparisonSummary(
        total_common=len(comparison.common_findings),
        total_only_in_a=len(comparison.only_in_scan_a),
        total_only_in_b=len(comparison.only_in_scan_b),
    )


def _delta(comparison: FindingComparison) -> SecurityDeltaOut:
    d = calculate_security_delta(comparison)
    return SecurityDeltaOut(
        total_delta=d.total_delta,
        critical_delta=d.critical_delta,
        high_delta=d.high_delta,
        medium_delta=d.medium_delta,
        low_delta=d.low_delta,
        info_delta=d.info_delta,
    )


def _load_completed_scan(db: Session, organization_id: str, scan_id: int, label: str) -> Scan:
    scan = (
        db.query(Scan)
        .filter(Scan.id == scan_id, Scan.organization_id == organization_id)
        .first()
    )
    if scan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Scan {label} not found",
        )
    if scan.status != COMPARABLE_STATUS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Scan {label} is not completed (status: {scan.status})",
        )
    return scan


@router.get("/compare", response_model=ScanComparisonResponse)
def get_compare(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    scan_a: Annotated[int, Query(ge=1, description="Baseline scan id")],
    scan_b: Annotated[int, Query(ge=1, description="Scan compared against the baseline")],
) -> ScanComparisonResponse:
    """
    Compare two completed scans of the caller's organization.

    only_in_scan_b are regressions and only_in_scan_a improvements when B is the later scan.
    """
    if scan_a == scan_b:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot compare a scan with itself",
        )
    a = _load_completed_scan(db, user.organization_id, scan_a, "A")
    b = _load_completed_scan(db, user.organization_id, scan_b, "B")

    findings_a = db.query(Finding).filter(Finding.scan_id == a.id).order_by(Finding.id).all()
    findings_b = db.query(Finding).filter(Finding.scan_id == b.id).order_by(Finding.id).all()
    comparison = findings_diff(findings_a, findings_b)

    return ScanComparisonResponse(
        scan_a=ScanSummary.model_validate(a),
        scan_b=ScanSummary.model_validate(b),
        common_findings=[FindingOut.model_validate(f) for f in comparison.common_findings],
        only_in_scan_a=[FindingOut.model_validate(f) for f in comparison.only_in_scan_a],
        only_in_scan_b=[FindingOut.model_validate(f) for f in comparison.only_in_scan_b],
        summary=_summary(comparison),
        delta=_delta(comparison),
    )


@router.post("/compare", response_model=InlineComparisonResponse)
def post_compare(
    body: InlineComparisonRequest,
    _user: Annotated[CurrentUser, Depends(get_current_user)],
) -> InlineComparisonResponse:
    """Compare two finding lists supplied in the body (e.g. exported from scanners)."""
    if len(body.findings_a) > MAX_INLINE_FINDINGS or len(body.findings_b) > MAX_INLINE_FINDINGS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"At most {MAX_INLINE_FINDINGS} findings are allowed per side.",
        )
    comparison = findings_diff(body.findings_a, body.findings_b)
    return InlineComparisonResponse(
        common_findings=comparison.common_findings,
        only_in_scan_a=comparison.only_in_scan_a,
        only_in_scan_b=comparison.only_in_scan_b,
        summary=_summary(comparison),
        delta=_delta(comparison),
    )


@router.get("", response_model=ScanListResponse)
def get_scans(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    project_id: Annotated[int | None, Query(ge=1)] = None,
    status_filter: Annotated[
        str | None, Query(alias="status", description="Comma-separated statuses")
    ] = None,
    repository_url: Annotated[
        str | None, Query(max_length=2048, description="Matched in normalized form")
    ] = None,
    repository_branch: Annotated[str | None, Query(max_length=255)] = None,
    start_date: Annotated[datetime | None, Query(description="Created at or after")] = None,
    end_date: Annotated[datetime | None, Query(description="Created at or before")] = None,
    cursor: Annotated[int | None, Query(ge=1, description="next_cursor of the previous page")] = None,
    limit: Annotated[int, Query(ge=1, description="Page size, at most 100")] = DEFAULT_PAGE_SIZE,
) -> ScanListResponse:
    """Scans of the caller's organization, newest first."""
    try:
        statuses = parse_status_filter(status_filter)
    except InvalidScanRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    page = list_scans(
        db,
        user.organization_id,
        project_id=project_id,
        statuses=statuses,
        repository_url=repository_url,
        repository_branch=repository_branch,
        created_after=start_date,
        created_before=end_date,
        cursor=cursor,
        limit=limit,
    )
    return ScanListResponse(
        scans=[ScanOut.model_validate(s) for s in page.scans],
        next_cursor=page.next_cursor,
        total=page.total,
    )


@router.post("", response_model=ScanOut, status_code=status.HTTP_201_CREATED)
def post_scan(
    body: ScanCreateRequest,
    background_tasks: BackgroundTasks,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ScanOut:
    """
    Start a scan of a project. The repository defaults to the project's default repository
    and branch ("main" when none is set). When the organization has a credential for the
    repository it is checked out in the background; otherwise the scan runs without one.
    """
    try:
        project = get_project(db, user.organization_id, body.project_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    try:
        reference = resolve_repository(
            project,
            body.repository_url,
            body.repository_branch,
            body.repository_commit_hash,
        )
    except InvalidScanRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e

    snapshot = None
    if reference is not None:
        try:
            snapshot = resolve_credential_snapshot(
                db, user.organization_id, reference.url, get_cipher
            )
        except CredentialDecryptionError as e:
            logger.error(
                "Stored credential could not be decrypted for scan",
                extra={"organization_id": user.organization_id, "project_id": project.id},
            )
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Stored credential could not be decrypted; rotate it.",
            ) from e

    scan = create_scan(
        db,
        organization_id=user.organization_id,
        project=project,
        reference=reference,
        will_checkout=snapshot is not None,
        created_by=actor_id(user),
    )
    if snapshot is not None:
        background_tasks.add_task(run_scan_checkout, scan.id, reference, snapshot, settings)
    return ScanOut.model_validate(scan)


@router.get("/{scan_id}", response_model=ScanOut)
def get_scan_by_id(
    scan_id: Annotated[int, Path(ge=1)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ScanOut:
    try:
        scan = get_scan(db, user.organization_id, scan_id)
    except ScanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    return ScanOut.model_validate(scan)


@router.post("/{scan_id}/findings", response_model=ScanOut)
async def post_scan_findings(
    scan_id: Annotated[int, Path(ge=1)],
    body: FindingsSubmission,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ScanOut:
    """
    Record the scanner's findings and complete the scan. Findings with file_path and
    line_number get a code excerpt from the checkout, which is then removed.
    409 when the scan is no longer PENDING or RUNNING.
    """
    if len(body.findings) > MAX_INLINE_FINDINGS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"At most {MAX_INLINE_FINDINGS} findings are allowed per scan.",
        )
    try:
        scan, workdir = await run_in_threadpool(
            complete_scan, db, user.organization_id, scan_id, body.findings, settings
        )
    except ScanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except ScanStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e

    if workdir:
        result = await cleanup_repository(workdir)
        if not result.success:
            logger.warning(
                "Scan working tree not removed: %s",
                result.error,
                extra={"scan_id": scan_id},
            )
    return ScanOut.model_validate(scan)
