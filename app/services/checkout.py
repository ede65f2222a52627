"""Check out a repository for a scan and locate findings in the checked-out tree."""

from __future__ import annotations

import logging
import os
import uuid
from typing import TYPE_CHECKING

from app.schemas.repository import (
    CloneOutcome,
    CodeLocation,
    CredentialType,
    RepositoryReference,
)
from app.services.repo_cleanup import schedule_cleanup
from app.services.repo_clone import clone_with_ssh_key, clone_with_token
from app.services.snippet import extract_code_snippet

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

WORKDIR_PREFIX = "scan-"


def allocate_workdir(clone_root: str) -> str:
    """Unique, not-yet-existing directory under clone_root for one clone."""
    os.makedirs(clone_root, mode=0o700, exist_ok=True)
    return os.path.join(clone_root, f"{WORKDIR_PREFIX}{uuid.uuid4().hex}")


async def checkout_repository(
    reference: RepositoryReference,
    credential_type: CredentialType,
    credential: str,
    settings: Settings,
) -> CloneOutcome:
    """
    Clone reference into a fresh directory under CLONE_ROOT_DIR.

    On success a delayed cleanup is scheduled as a safety net; the caller still removes the
    tree (cleanup_repository) when the scan finishes.
    """
    target_dir = allocate_workdir(settings.CLONE_ROOT_DIR)
    if credential_type == "PAT":
        outcome = await clone_with_token(
            reference.url,
            credential,
            target_dir,
            depth=settings.GIT_CLONE_DEPTH,
            branch=reference.branch,
            commit_hash=reference.commit_hash,
            timeout=settings.GIT_CLONE_TIMEOUT_SEC,
        )
    else:
        outcome = await clone_with_ssh_key(
            reference.url,
            credential,
            target_dir,
            depth=settings.GIT_CLONE_DEPTH,
            branch=reference.branch,
            commit_hash=reference.commit_hash,
            timeout=settings.GIT_CLONE_TIMEOUT_SEC,
            ssh_connect_timeout=settings.GIT_SSH_CONNECT_TIMEOUT_SEC,
        )

    if outcome.success and outcome.repo_path:
        schedule_cleanup(outcome.repo_path, delay=settings.CLEANUP_DELAY_SEC)
    else:
        logger.warning(
            "Checkout failed: %s",
            outcome.error_type,
            extra={"target_dir": target_dir, "error": outcome.error},
        )
    return outcome


def locate_finding(
    outcome: CloneOutcome,
    reference: RepositoryReference,
    file_path: str,
    line_number: int,
    settings: Settings,
) -> CodeLocation | None:
    """Code location for a finding in a successful checkout, using the configured limits."""
    if not outcome.success or not outcome.repo_path:
        return None
    return extract_code_snippet(
        outcome.repo_path,
        file_path,
        line_number,
        reference.url,
        outcome.commit_hash or reference.commit_hash or "",
        outcome.branch or reference.branch,
        context_lines=settings.SNIPPET_CONTEXT_LINES,
        max_file_size=settings.SNIPPET_MAX_FILE_BYTES,
    )
