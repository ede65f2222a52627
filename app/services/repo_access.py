"""
Non-destructive repository access validation.

Runs `git ls-remote --heads --refs` against the remote with the supplied credential to confirm
it grants read access and to list branches. Nothing is cloned and nothing is written to disk
except the short-lived SSH key file for SSH credentials.
"""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import quote, urlsplit

import httpx

from app.core.crypto import sanitize_url
from app.schemas.repository import CredentialType, ValidationErrorType, ValidationOutcome
from app.services.git_errors import GitFailure, classify_git_error, to_validation_error
from app.services.git_runner import (
    GitCommandError,
    GitTimeoutError,
    build_ssh_command,
    ephemeral_ssh_key,
    run_git,
)
from app.services.redaction import redact_secrets

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT_SEC = 10.0
SSH_CONNECT_TIMEOUT_SEC = 10
MAX_REPO_SIZE_BYTES = 5 * 1024 * 1024 * 1024
# Rough per-branch size used when no platform API is available.
ESTIMATED_BYTES_PER_BRANCH = 10 * 1024 * 1024
DEFAULT_BRANCH_CANDIDATES = ("main", "master", "develop")
GITHUB_HOST = "github.com"
GITHUB_API_URL = "https://api.github.com"

_LS_REMOTE_HEAD_PATTERN = re.compile(r"^[0-9a-f]+\s+refs/heads/(.+)$")

# Fixed messages per category; UNKNOWN carries the redacted git message instead.
ERROR_MESSAGES: dict[ValidationErrorType, str] = {
    "AUTH_FAILED": "Authentication failed. Please check your credentials.",
    "NOT_FOUND": "Repository not found. Please check the URL.",
    "VALIDATION_TIMEOUT": "Validation timed out. The repository host did not respond in time.",
    "NETWORK_ERROR": "Network error. Please check your connection.",
}


def build_authenticated_url(url: str, token: str) -> str:
    """https://host/owner/repo -> https://x-access-token:<token>@host/owner/repo (token URL-quoted)."""
    trimmed = url.strip()
    if not trimmed.startswith("https://"):
        raise ValueError("Token authentication requires an https:// URL")
    return f"https://x-access-token:{quote(token, safe='')}@{trimmed[len('https://'):]}"


def parse_ls_remote(output: str) -> list[str]:
    """Branch names from `git ls-remote --heads` output, in advertised order."""
    branches: list[str] = []
    for line in output.splitlines():
        match = _LS_REMOTE_HEAD_PATTERN.match(line.strip())
        if match:
            branches.append(match.group(1))
    return branches


def pick_default_branch(branches: list[str]) -> str | None:
    """First of main/master/develop in advertised order, else the first branch, else None."""
    for name in branches:
        if name in DEFAULT_BRANCH_CANDIDATES:
            return name
    return branches[0] if branches else None


def estimate_size_from_branches(branches: list[str]) -> int:
    return len(branches) * ESTIMATED_BYTES_PER_BRANCH


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _failure(
    error: ValidationErrorType, message: str, start: float
) -> ValidationOutcome:
    return ValidationOutcome(
        valid=False,
        error=error,
        error_message=message,
        duration_ms=_elapsed_ms(start),
    )


async def validate_repository_access(
    url: str,
    credential_type: CredentialType,
    credential: str,
    *,
    timeout: float = VALIDATION_TIMEOUT_SEC,
    ssh_connect_timeout: int = SSH_CONNECT_TIMEOUT_SEC,
) -> ValidationOutcome:
    """
    Check that credential grants read access to url.

    PAT credentials need an https:// URL, SSH keys a git@ URL. Failures are returned as a
    ValidationOutcome with a category and a message free of credential material; this
    function does not raise for git, network or input errors.
    """
    start = time.perf_counter()
    trimmed = (url or "").strip()
    if credential_type == "PAT" and not trimmed.startswith("https://"):
        return _failure("UNKNOWN", "PAT authentication requires HTTPS URL", start)
    if credential_type == "SSH" and not trimmed.startswith("git@"):
        return _failure("UNKNOWN", "SSH authentication requires SSH URL", start)
    if credential_type not in ("PAT", "SSH"):
        return _failure("UNKNOWN", f"Unsupported credential type: {credential_type}", start)
    if not credential or not credential.strip():
        return _failure("AUTH_FAILED", ERROR_MESSAGES["AUTH_FAILED"], start)

    ls_remote = ["ls-remote", "--heads", "--refs"]
    # Never fall back to credentials stored on the host.
    config: list[tuple[str, str]] = [("credential.helper", "")]
    raw_error: str | None = None
    timed_out = False
    output = ""
    try:
        if credential_type == "PAT":
            output = await run_git(
                [*ls_remote, build_authenticated_url(trimmed, credential.strip())],
                timeout=timeout,
                config=config,
            )
        else:
            with ephemeral_ssh_key(credential) as key_path:
                output = await run_git(
                    [*ls_remote, trimmed],
                    timeout=timeout,
                    config=[
                        *config,
                        ("core.sshCommand", build_ssh_command(key_path, ssh_connect_timeout)),
                    ],
                )
    except GitTimeoutError as e:
        raw_error, timed_out = e.message, True
    except GitCommandError as e:
        raw_error = e.message
        timed_out = (time.perf_counter() - start) >= timeout
    except OSError as e:
        # git binary missing, temp dir unwritable, ...
        raw_error = str(e)

    if raw_error is not None:
        failure = classify_git_error(raw_error, timed_out=timed_out)
        error = to_validation_error(failure)
        safe_raw = redact_secrets(raw_error, [credential])
        logger.info(
            "Repository access validation failed",
            extra={
                "repository_url": sanitize_url(trimmed),
                "credential_type": credential_type,
                "error": error,
                "detail": safe_raw,
            },
        )
        if failure is GitFailure.UNKNOWN:
            return _failure("UNKNOWN", safe_raw or "Unknown error", start)
        return _failure(error, ERROR_MESSAGES[error], start)

    branches = parse_ls_remote(output)
    outcome = ValidationOutcome(
        valid=True,
        branches=branches,
        default_branch=pick_default_branch(branches),
        estimated_size=estimate_size_from_branches(branches),
        duration_ms=_elapsed_ms(start),
    )
    logger.info(
        "Repository access validated",
        extra={
            "repository_url": sanitize_url(trimmed),
            "credential_type": credential_type,
            "branch_count": len(branches),
            "duration_ms": outcome.duration_ms,
        },
    )
    return outcome


def github_repo_path(url: str) -> str | None:
    """'owner/repo' for https://github.com/owner/repo URLs, else None."""
    parts = urlsplit(url.strip())
    if parts.scheme != "https" or (parts.hostname or "").lower() != GITHUB_HOST:
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) != 2:
        return None
    owner, repo = segments
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return f"{owner}/{repo}" if owner and repo else None


async def fetch_github_repo_size(
    url: str,
    token: str,
    *,
    api_url: str = GITHUB_API_URL,
    timeout: float = 5.0,
) -> int | None:
    """
    Repository size in bytes from the GitHub REST API (`size` is reported in KiB).
    Returns None when the URL is not a github.com repository or the API call fails.
    """
    repo_path = github_repo_path(url)
    if repo_path is None:
        return None
    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
    }
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(f"{api_url.rstrip('/')}/repos/{repo_path}", headers=headers)
    except httpx.HTTPError as e:
        logger.warning(
            "GitHub size lookup failed: %s",
            redact_secrets(str(e), [token]),
            extra={"repository_url": sanitize_url(url)},
        )
        return None
    if resp.status_code != 200:
        logger.warning(
            "GitHub size lookup returned status %s",
            resp.status_code,
            extra={"repository_url": sanitize_url(url)},
        )
        return None
    try:
        size_kib = resp.json().get("size")
    except ValueError:
        return None
    if not isinstance(size_kib, int) or size_kib < 0:
        return None
    return size_kib * 1024


async def validate_repository_size(
    url: str,
    credential_type: CredentialType,
    credential: str,
    *,
    timeout: float = VALIDATION_TIMEOUT_SEC,
    ssh_connect_timeout: int = SSH_CONNECT_TIMEOUT_SEC,
    max_size_bytes: int = MAX_REPO_SIZE_BYTES,
    use_github_api: bool = False,
    github_api_url: str = GITHUB_API_URL,
    github_api_timeout: float = 5.0,
) -> ValidationOutcome:
    """
    Validate access, then reject repositories whose estimated size exceeds max_size_bytes.

    The estimate comes from the GitHub API for PATs on github.com when use_github_api is set,
    otherwise (or when the API is unavailable) from the branch count heuristic.
    """
    outcome = await validate_repository_access(
        url,
        credential_type,
        credential,
        timeout=timeout,
        ssh_connect_timeout=ssh_connect_timeout,
    )
    if not outcome.valid:
        return outcome

    if use_github_api and credential_type == "PAT":
        api_size = await fetch_github_repo_size(
            url, credential.strip(), api_url=github_api_url, timeout=github_api_timeout
        )
        if api_size is not None:
            outcome = outcome.model_copy(update={"estimated_size": api_size})

    if outcome.estimated_size is not None and outcome.estimated_size > max_size_bytes:
        limit_gb = max_size_bytes / (1024**3)
        estimated_gb = outcome.estimated_size / (1024**3)
        return outcome.model_copy(
            update={
                "valid": False,
                "error": "REPO_TOO_LARGE",
                "error_message": (
                    f"Repository size exceeds {limit_gb:g}GB limit "
                    f"(estimated: {round(estimated_gb)}GB)."
                ),
            }
        )
    return outcome


async def quick_validate(
    url: str,
    credential_type: CredentialType,
    credential: str,
    *,
    timeout: float = VALIDATION_TIMEOUT_SEC,
) -> tuple[bool, ValidationErrorType | None]:
    """Access check without size estimation: (valid, error category)."""
    outcome = await validate_repository_access(
        url, credential_type, credential, timeout=timeout
    )
    return outcome.valid, outcome.error
