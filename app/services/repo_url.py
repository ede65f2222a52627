"""Repository URL and reference normalization/validation.

Canonical form: trimmed, no trailing ".git", no trailing slashes. Credentials are stored and
looked up by the canonical URL only, so every comparison goes through normalize_repo_url.
"""

import re
from typing import Literal

from pydantic import BaseModel

UrlType = Literal["https", "ssh"]

# HTTPS: https://github.com/owner/repo, https://gitlab.example.com/group/sub/repo
_HTTPS_REPO_PATTERN = re.compile(r"^https://[\w.\-]+(:\d+)?(/[\w.\-]+)+$")
# SSH (scp-like): git@github.com:owner/repo
_SSH_REPO_PATTERN = re.compile(r"^git@[\w.\-]+:[\w.\-/]+$")
_COMMIT_HASH_PATTERN = re.compile(r"^[a-f0-9]{40}$")

MAX_BRANCH_NAME_LENGTH = 255
_GIT_SUFFIX = ".git"


class UrlValidation(BaseModel):
    """Result of checking a repository URL's format."""

    valid: bool
    error: str | None = None
    type: UrlType | None = None


def normalize_repo_url(url: str | None) -> str:
    """
    Return the canonical repository URL.

    https://github.com/acme/repo.git  -> https://github.com/acme/repo
    https://github.com/acme/repo/     -> https://github.com/acme/repo
    https://github.com/acme/repo.git/ -> https://github.com/acme/repo
    git@github.com:acme/repo.git      -> git@github.com:acme/repo
    """
    if not url or not isinstance(url, str):
        return ""
    normalized = url.strip()
    # Strip slashes and ".git" until stable so the result is a fixed point.
    while True:
        stripped = normalized.rstrip("/")
        if stripped.endswith(_GIT_SUFFIX):
            stripped = stripped[: -len(_GIT_SUFFIX)]
        if stripped == normalized:
            return normalized
        normalized = stripped


def normalize_branch_name(branch: str | None, lowercase: bool = False) -> str:
    """Trim a branch name; optionally lowercase it for case-insensitive comparison."""
    if not branch or not isinstance(branch, str):
        return ""
    normalized = branch.strip()
    return normalized.lower() if lowercase else normalized


def repo_urls_equal(url1: str | None, url2: str | None) -> bool:
    """True when both URLs are non-empty and share the same canonical form."""
    if not url1 or not url2:
        return False
    return normalize_repo_url(url1) == normalize_repo_url(url2)


def detect_url_type(url: str | None) -> UrlType | None:
    if not url:
        return None
    trimmed = url.strip()
    if trimmed.startswith("https://"):
        return "https"
    if trimmed.startswith("git@"):
        return "ssh"
    return None


def validate_repository_url(url: str | None) -> UrlValidation:
    """Check that url is an HTTPS (https://host/owner/repo) or SSH (git@host:owner/repo) repository URL."""
    if not url or not isinstance(url, str) or not url.strip():
        return UrlValidation(valid=False, error="Repository URL is required")

    trimmed = url.strip()
    if trimmed.startswith("https://"):
        if _HTTPS_REPO_PATTERN.match(trimmed):
            return UrlValidation(valid=True, type="https")
        return UrlValidation(
            valid=False,
            error="Invalid HTTPS repository URL format. Expected: https://host.com/owner/repo",
        )
    if trimmed.startswith("git@"):
        if _SSH_REPO_PATTERN.match(trimmed):
            return UrlValidation(valid=True, type="ssh")
        return UrlValidation(
            valid=False,
            error="Invalid SSH repository URL format. Expected: git@host.com:owner/repo",
        )
    return UrlValidation(
        valid=False,
        error="Unsupported repository URL format. Must be HTTPS (https://...) or SSH (git@...)",
    )


def validate_commit_hash(commit_hash: str | None) -> bool:
    """Full SHA-1 commit hashes only (40 lowercase hex characters)."""
    if not commit_hash or not isinstance(commit_hash, str):
        return False
    return _COMMIT_HASH_PATTERN.match(commit_hash.strip()) is not None


def validate_branch_name(branch: str | None) -> bool:
    """
    Basic git check-ref-format rules for a branch name.
    A leading '-' is rejected so the name can never be parsed as a git option.
    """
    if not branch or not isinstance(branch, str):
        return False
    trimmed = branch.strip()
    if not trimmed or len(trimmed) > MAX_BRANCH_NAME_LENGTH:
        return False
    if ".." in trimmed or any(c.isspace() for c in trimmed):
        return False
    if trimmed.startswith(("/", "-")) or trimmed.endswith(("/", ".lock", ".")):
        return False
    if any(c in trimmed for c in ("~", "^", ":", "?", "*", "[", "\\")) or "@{" in trimmed:
        return False
    return True
