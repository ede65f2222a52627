"""
Scan lifecycle: start a scan of a project's repository, check the repository out in the
background, and record the scanner's findings with source excerpts from the checkout.

A decrypted credential exists only inside a CredentialSnapshot held in memory between the
request that starts the scan and the checkout it triggers.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.crypto import CredentialCipher, sanitize_url
from app.core.database import session_scope
from app.models import Finding, Project, Scan
from app.schemas.repository import CloneOutcome, CredentialType, RepositoryReference
from app.schemas.scans import ScanFindingIn
from app.services.checkout import checkout_repository, locate_finding
from app.services.credentials import decrypt_credential_secret, find_credential_for_repository
from app.services.repo_cleanup import cleanup_repository
from app.services.repo_url import (
    normalize_branch_name,
    normalize_repo_url,
    validate_branch_name,
    validate_commit_hash,
    validate_repository_url,
)
from app.services.snippet import attach_code_location

logger = logging.getLogger(__name__)

DEFAULT_SCAN_BRANCH = "main"

STATUS_PENDING = "PENDING"
STATUS_RUNNING = "RUNNING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
SCAN_STATUSES = (STATUS_PENDING, STATUS_RUNNING, STATUS_COMPLETED, STATUS_FAILED, "CANCELLED", "TIMEOUT")
# Scans that still accept findings.
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_RUNNING)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class ScanServiceError(Exception):
    """Base error for scan operations."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidScanRequestError(ScanServiceError):
    """Repository URL, branch, commit or status filter is malformed."""


class ScanNotFoundError(ScanServiceError):
    """No scan with this id in the caller's organization."""


class ScanStateError(ScanServiceError):
    """The scan is not in a status that allows the operation."""


@dataclass(frozen=True)
class CredentialSnapshot:
    """Decrypted credential for one checkout. Never persisted; the secret is left out of repr."""

    credential_id: int
    credential_type: CredentialType
    secret: str = field(repr=False)


@dataclass
class ScanPage:
    scans: list[Scan]
    next_cursor: int | None
    total: int


def _audit(event: str, scan: Scan, user_id: int | None = None, **fields) -> None:
    logger.info(
        "Scan audit: %s",
        event,
        extra={
            "event": event,
            "scan_id": scan.id,
            "organization_id": scan.organization_id,
            "project_id": scan.project_id,
            "repository_url": sanitize_url(scan.repository_url),
            "repository_branch": scan.repository_branch,
            "status": scan.status,
            "user_id": user_id,
            **fields,
        },
    )


def resolve_repository(
    project: Project,
    repository_url: str | None = None,
    repository_branch: str | None = None,
    repository_commit_hash: str | None = None,
) -> RepositoryReference | None:
    """
    Repository to scan: request values first, then the project's defaults.
    None when neither names a URL (the scan runs without a checkout).
    Raises InvalidScanRequestError for a malformed URL, branch or commit.
    """
    url = (repository_url or "").strip() or project.default_repository_url
    if not url:
        return None
    check = validate_repository_url(url)
    if not check.valid:
        raise InvalidScanRequestError(check.error or "Invalid repository URL")

    branch = (
        normalize_branch_name(repository_branch)
        or normalize_branch_name(project.default_repository_branch)
        or DEFAULT_SCAN_BRANCH
    )
    if not validate_branch_name(branch):
        raise InvalidScanRequestError(f"Invalid branch name: {branch!r}")

    commit_hash = (repository_commit_hash or "").strip().lower() or None
    if commit_hash is not None and not validate_commit_hash(commit_hash):
        raise InvalidScanRequestError("Commit hash must be a full 40-character SHA")

    return RepositoryReference(url=url, branch=branch, commit_hash=commit_hash)


def resolve_credential_snapshot(
    db: Session,
    organization_id: str,
    repository_url: str,
    cipher_provider: Callable[[], CredentialCipher],
) -> CredentialSnapshot | None:
    """
    Decrypt the organization's credential for repository_url. None (with a warning) when no
    credential is stored, in which case the scan proceeds without a checkout.
    cipher_provider is only called when a credential exists.
    Raises CredentialDecryptionError when the stored payload cannot be decrypted.
    """
    row = find_credential_for_repository(db, organization_id, repository_url)
    if row is None:
        logger.warning(
            "No credential for repository; scan proceeds without checkout",
            extra={
                "organization_id": organization_id,
                "repository_url": sanitize_url(repository_url),
            },
        )
        return None
    secret = decrypt_credential_secret(cipher_provider(), row)
    return CredentialSnapshot(
        credential_id=row.id,
        credential_type=row.credential_type,
        secret=secret,
    )


def create_scan(
    db: Session,
    *,
    organization_id: str,
    project: Project,
    reference: RepositoryReference | None,
    will_checkout: bool,
    created_by: int | None = None,
) -> Scan:
    """
    Persist a new scan. It stays PENDING until the checkout finishes; a scan without a
    checkout starts RUNNING immediately.
    """
    scan = Scan(
        organization_id=organization_id,
        project_id=project.id,
        project_name=project.name,
        status=STATUS_PENDING if will_checkout else STATUS_RUNNING,
        started_at=None if will_checkout else datetime.now(UTC),
        repository_url=reference.url if reference else None,
        repository_branch=reference.branch if reference else None,
        repository_commit_hash=reference.commit_hash if reference else None,
        findings_count=0,
    )
    db.add(scan)
    db.commit()
    db.refresh(scan)
    _audit("scan.started", scan, created_by)
    return scan


def get_scan(db: Session, organization_id: str, scan_id: int) -> Scan:
    """Raises ScanNotFoundError when absent or owned by another organization."""
    scan = (
        db.query(Scan)
        .filter(Scan.id == scan_id, Scan.organization_id == organization_id)
        .first()
    )
    if scan is None:
        raise ScanNotFoundError(f"Scan {scan_id} not found")
    return scan


def parse_status_filter(raw: str | None) -> list[str]:
    """Comma-separated statuses, upper-cased. Raises InvalidScanRequestError for unknown values."""
    if not raw:
        return []
    statuses = [s.strip().upper() for s in raw.split(",") if s.strip()]
    unknown = [s for s in statuses if s not in SCAN_STATUSES]
    if unknown:
        raise InvalidScanRequestError(f"Unknown scan status: {', '.join(unknown)}")
    return statuses


def list_scans(
    db: Session,
    organization_id: str,
    *,
    project_id: int | None = None,
    statuses: Sequence[str] = (),
    repository_url: str | None = None,
    repository_branch: str | None = None,
    created_after: datetime | None = None,
    created_before: datetime | None = None,
    cursor: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> ScanPage:
    """
    Newest first. repository_url matches by normalized form. total counts every match;
    next_cursor is the id to pass as cursor for the following page.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = db.query(Scan).filter(Scan.organization_id == organization_id)
    if project_id is not None:
        query = query.filter(Scan.project_id == project_id)
    if statuses:
        query = query.filter(Scan.status.in_(list(statuses)))
    if repository_url:
        query = query.filter(Scan.repository_url == normalize_repo_url(repository_url))
    if repository_branch:
        query = query.filter(Scan.repository_branch == normalize_branch_name(repository_branch))
    if created_after is not None:
        query = query.filter(Scan.created_at >= created_after)
    if created_before is not None:
        query = query.filter(Scan.created_at <= created_before)

    total = query.count()
    if cursor is not None:
        query = query.filter(Scan.id < cursor)
    rows = query.order_by(Scan.id.desc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    return ScanPage(
        scans=rows,
        next_cursor=rows[-1].id if has_more else None,
        total=total,
    )


def apply_checkout_outcome(scan: Scan, outcome: CloneOutcome) -> None:
    """RUNNING with the checked-out tree on success; FAILED with the clone error otherwise."""
    now = datetime.now(UTC)
    if outcome.success:
        scan.status = STATUS_RUNNING
        scan.started_at = now
        scan.workdir = outcome.repo_path
        if outcome.commit_hash:
            scan.repository_commit_hash = outcome.commit_hash
        if outcome.branch and outcome.branch != "HEAD":
            scan.repository_branch = outcome.branch
        return
    scan.status = STATUS_FAILED
    scan.error_code = outcome.error_type or "UNKNOWN"
    scan.error_message = outcome.error
    scan.completed_at = now


def _record_checkout(
    scan_id: int,
    outcome: CloneOutcome,
    session_factory: Callable[[], AbstractContextManager[Session]],
) -> str | None:
    """Store the outcome; return a tree that no scan owns any more (deleted or cancelled scan)."""
    with session_factory() as db:
        scan = db.query(Scan).filter(Scan.id == scan_id).first()
        if scan is None or scan.status != STATUS_PENDING:
            return outcome.repo_path
        apply_checkout_outcome(scan, outcome)
        _audit(
            "scan.checkout_completed" if outcome.success else "scan.checkout_failed",
            scan,
            error_type=outcome.error_type,
            duration_ms=outcome.duration_ms,
        )
    return None


async def run_scan_checkout(
    scan_id: int,
    reference: RepositoryReference,
    snapshot: CredentialSnapshot,
    settings: Settings,
    session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
) -> CloneOutcome:
    """Background step after create_scan: clone the repository and move the scan on."""
    try:
        outcome = await checkout_repository(
            reference, snapshot.credential_type, snapshot.secret, settings
        )
    except OSError as e:
        logger.error(
            "Could not prepare scan working directory: %s",
            type(e).__name__,
            extra={"scan_id": scan_id, "clone_root": settings.CLONE_ROOT_DIR},
        )
        outcome = CloneOutcome(
            success=False,
            error_type="UNKNOWN",
            error="Could not prepare the working directory",
        )
    orphaned = await asyncio.to_thread(_record_checkout, scan_id, outcome, session_factory)
    if orphaned:
        logger.info("Removing checkout of a scan that is no longer pending", extra={"scan_id": scan_id})
        await cleanup_repository(orphaned)
    return outcome


def _checkout_of(scan: Scan) -> tuple[CloneOutcome, RepositoryReference | None]:
    if not scan.repository_url:
        return CloneOutcome(success=False), None
    reference = RepositoryReference(
        url=scan.repository_url,
        branch=scan.repository_branch or DEFAULT_SCAN_BRANCH,
        commit_hash=scan.repository_commit_hash,
    )
    outcome = CloneOutcome(
        success=bool(scan.workdir),
        repo_path=scan.workdir,
        commit_hash=scan.repository_commit_hash,
        branch=scan.repository_branch,
    )
    return outcome, reference


def complete_scan(
    db: Session,
    organization_id: str,
    scan_id: int,
    findings: Sequence[ScanFindingIn],
    settings: Settings,
) -> tuple[Scan, str | None]:
    """
    Store the scanner's findings and mark the scan COMPLETED.

    Findings with file_path and line_number get a codeLocation excerpt from the checkout.
    Returns the scan and the working tree the caller must now remove (None without one).
    Raises ScanNotFoundError, or ScanStateError when the scan is not PENDING or RUNNING.
    """
    scan = get_scan(db, organization_id, scan_id)
    if scan.status not in ACTIVE_STATUSES:
        raise ScanStateError(f"Scan {scan_id} is not running (status: {scan.status})")

    outcome, reference = _checkout_of(scan)
    located = 0
    for item in findings:
        evidence = dict(item.evidence or {})
        if reference is not None and item.file_path and item.line_number:
            location = locate_finding(outcome, reference, item.file_path, item.line_number, settings)
            if location is not None:
                located += 1
            evidence = attach_code_location(evidence, location)
        db.add(
            Finding(
                scan_id=scan.id,
                title=item.title,
                category=item.category,
                severity=item.severity,
                cwe=item.cwe,
                description=item.description,
                evidence=evidence or None,
            )
        )

    workdir = scan.workdir
    scan.findings_count = len(findings)
    scan.status = STATUS_COMPLETED
    scan.completed_at = datetime.now(UTC)
    scan.workdir = None
    db.commit()
    db.refresh(scan)
    _audit("scan.completed", scan, findings_count=len(findings), located=located)
    return scan, workdir
