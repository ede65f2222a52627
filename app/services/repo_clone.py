"""
Authenticated shallow clones of customer repositories.

Tokens are embedded in the clone URL only for the clone/fetch commands and are scrubbed from
the origin remote afterwards; SSH keys live in a 0600 temp file for the duration of the call.
Every error message is redacted before it leaves this module.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Sequence

from app.core.crypto import sanitize_url
from app.schemas.repository import CloneErrorType, CloneOutcome
from app.services.git_errors import classify_git_error, to_clone_error
from app.services.git_runner import (
    GitCommandError,
    GitTimeoutError,
    build_ssh_command,
    ephemeral_ssh_key,
    run_git,
)
from app.services.redaction import redact_secrets
from app.services.repo_access import build_authenticated_url
from app.services.repo_cleanup import cleanup_repository
from app.services.repo_url import validate_branch_name, validate_commit_hash

logger = logging.getLogger(__name__)

CLONE_TIMEOUT_SEC = 300.0
DEFAULT_CLONE_DEPTH = 1
SSH_CONNECT_TIMEOUT_SEC = 10
# Short bound for local rev-parse calls.
REV_PARSE_TIMEOUT_SEC = 10.0


class _CloneInputError(Exception):
    def __init__(self, error_type: CloneErrorType, message: str) -> None:
        self.error_type = error_type
        self.message = message
        super().__init__(message)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _check_target_dir(target_dir: str) -> None:
    if not target_dir or not target_dir.strip():
        raise _CloneInputError("UNKNOWN", "Target directory is required")
    if os.path.exists(target_dir):
        if not os.path.isdir(target_dir) or os.listdir(target_dir):
            raise _CloneInputError(
                "UNKNOWN", "Target directory already exists and is not empty"
            )


def _check_refs(depth: int, branch: str | None, commit_hash: str | None) -> None:
    if depth < 1:
        raise _CloneInputError("INVALID_URL", "Clone depth must be at least 1")
    if branch is not None and not validate_branch_name(branch):
        raise _CloneInputError("INVALID_URL", "Invalid branch name")
    if commit_hash is not None and not validate_commit_hash(commit_hash):
        raise _CloneInputError(
            "INVALID_URL", "Invalid commit hash (expected 40 hex characters)"
        )


async def resolve_commit_hash(repo_path: str, *, timeout: float = REV_PARSE_TIMEOUT_SEC) -> str | None:
    """HEAD commit of a cloned working tree, or None if it cannot be read."""
    try:
        output = await run_git(["rev-parse", "HEAD"], cwd=repo_path, timeout=timeout)
    except (GitCommandError, GitTimeoutError, OSError) as e:
        logger.warning("Failed to resolve commit hash in %s: %s", repo_path, e)
        return None
    return output.strip() or None


async def _resolve_branch(repo_path: str) -> str | None:
    try:
        output = await run_git(
            ["rev-parse", "--abbrev-ref", "HEAD"],
            cwd=repo_path,
            timeout=REV_PARSE_TIMEOUT_SEC,
        )
    except (GitCommandError, GitTimeoutError, OSError) as e:
        logger.warning("Failed to resolve branch in %s: %s", repo_path, e)
        return None
    return output.strip() or None


async def _clone(
    fetch_url: str,
    public_url: str,
    target_dir: str,
    *,
    depth: int,
    branch: str | None,
    commit_hash: str | None,
    timeout: float,
    config: Sequence[tuple[str, str]],
) -> tuple[str | None, str | None]:
    """Clone, optionally pin a commit, scrub the remote, return (commit, branch)."""
    deadline = time.perf_counter() + timeout

    def remaining() -> float:
        # A tiny positive floor so wait_for still raises instead of skipping the call.
        return max(deadline - time.perf_counter(), 0.001)

    args = ["clone", "--depth", str(depth), "--no-tags"]
    if branch:
        args.extend(["--branch", branch, "--single-branch"])
    args.extend(["--", fetch_url, target_dir])
    await run_git(args, timeout=remaining(), config=config)

    if commit_hash:
        await run_git(
            ["fetch", "--depth", "1", fetch_url, commit_hash],
            cwd=target_dir,
            timeout=remaining(),
            config=config,
        )
        await run_git(
            ["checkout", "--detach", commit_hash],
            cwd=target_dir,
            timeout=remaining(),
        )

    # .git/config must not retain the token.
    await run_git(
        ["remote", "set-url", "origin", public_url],
        cwd=target_dir,
        timeout=remaining(),
    )
    resolved_commit = await resolve_commit_hash(target_dir)
    resolved_branch = await _resolve_branch(target_dir)
    return resolved_commit, resolved_branch


async def _run_clone(
    *,
    kind: str,
    url: str,
    secret: str,
    target_dir: str,
    depth: int,
    branch: str | None,
    commit_hash: str | None,
    timeout: float,
    ssh_connect_timeout: int,
) -> CloneOutcome:
    start = time.perf_counter()
    trimmed = (url or "").strip()
    try:
        if kind == "token":
            if not trimmed.startswith("https://"):
                raise _CloneInputError("INVALID_URL", "Invalid HTTPS repository URL")
            if not secret or not secret.strip():
                raise _CloneInputError(
                    "AUTHENTICATION", "Personal Access Token (PAT) is required"
                )
        else:
            if not trimmed.startswith("git@"):
                raise _CloneInputError("INVALID_URL", "Invalid SSH repository URL")
            if not secret or not secret.strip():
                raise _CloneInputError("AUTHENTICATION", "SSH private key is required")
        _check_refs(depth, branch, commit_hash)
        _check_target_dir(target_dir)
    except _CloneInputError as e:
        return CloneOutcome(
            success=False,
            error_type=e.error_type,
            error=e.message,
            duration_ms=_elapsed_ms(start),
        )

    base_config: list[tuple[str, str]] = [("credential.helper", "")]
    raw_error: str | None = None
    timed_out = False
    resolved_commit: str | None = None
    resolved_branch: str | None = None
    try:
        if kind == "token":
            resolved_commit, resolved_branch = await _clone(
                build_authenticated_url(trimmed, secret.strip()),
                trimmed,
                target_dir,
                depth=depth,
                branch=branch,
                commit_hash=commit_hash,
                timeout=timeout,
                config=base_config,
            )
        else:
            with ephemeral_ssh_key(secret) as key_path:
                resolved_commit, resolved_branch = await _clone(
                    trimmed,
                    trimmed,
                    target_dir,
                    depth=depth,
                    branch=branch,
                    commit_hash=commit_hash,
                    timeout=timeout,
                    config=[
                        *base_config,
                        ("core.sshCommand", build_ssh_command(key_path, ssh_connect_timeout)),
                    ],
                )
    except GitTimeoutError as e:
        raw_error, timed_out = e.message, True
    except GitCommandError as e:
        raw_error = e.message
    except OSError as e:
        raw_error = str(e)

    if raw_error is not None:
        error_type = to_clone_error(classify_git_error(raw_error, timed_out=timed_out))
        safe_error = redact_secrets(raw_error, [secret])
        cleanup = await cleanup_repository(target_dir)
        if not cleanup.success:
            logger.warning(
                "Failed to remove partial clone: %s",
                cleanup.error,
                extra={"repo_path": target_dir},
            )
        logger.warning(
            "Repository clone failed",
            extra={
                "repository_url": sanitize_url(trimmed),
                "error_type": error_type,
                "detail": safe_error,
            },
        )
        return CloneOutcome(
            success=False,
            error_type=error_type,
            error=safe_error or "Unknown clone error",
            duration_ms=_elapsed_ms(start),
        )

    outcome = CloneOutcome(
        success=True,
        repo_path=target_dir,
        commit_hash=resolved_commit,
        branch=resolved_branch,
        duration_ms=_elapsed_ms(start),
    )
    logger.info(
        "Repository cloned",
        extra={
            "repository_url": sanitize_url(trimmed),
            "repo_path": target_dir,
            "commit_hash": resolved_commit,
            "duration_ms": outcome.duration_ms,
        },
    )
    return outcome


async def clone_with_token(
    url: str,
    token: str,
    target_dir: str,
    *,
    depth: int = DEFAULT_CLONE_DEPTH,
    branch: str | None = None,
    commit_hash: str | None = None,
    timeout: float = CLONE_TIMEOUT_SEC,
) -> CloneOutcome:
    """
    Shallow-clone an https:// repository using a personal access token.

    Never raises for git, network or input errors; the outcome carries a category and a
    redacted message. On failure target_dir is removed.
    """
    return await _run_clone(
        kind="token",
        url=url,
        secret=token,
        target_dir=target_dir,
        depth=depth,
        branch=branch,
        commit_hash=commit_hash,
        timeout=timeout,
        ssh_connect_timeout=SSH_CONNECT_TIMEOUT_SEC,
    )


async def clone_with_ssh_key(
    url: str,
    private_key: str,
    target_dir: str,
    *,
    depth: int = DEFAULT_CLONE_DEPTH,
    branch: str | None = None,
    commit_hash: str | None = None,
    timeout: float = CLONE_TIMEOUT_SEC,
    ssh_connect_timeout: int = SSH_CONNECT_TIMEOUT_SEC,
) -> CloneOutcome:
    """Shallow-clone a git@ repository using an SSH private key. Same contract as clone_with_token."""
    return await _run_clone(
        kind="ssh",
        url=url,
        secret=private_key,
        target_dir=target_dir,
        depth=depth,
        branch=branch,
        commit_hash=commit_hash,
        timeout=timeout,
        ssh_connect_timeout=ssh_connect_timeout,
    )
