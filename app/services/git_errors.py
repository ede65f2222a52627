"""Classify git failure text into closed categories.

One pure classifier shared by remote validation (ls-remote) and cloning. Matching is
case-insensitive and priority-ordered: authentication, not found, timeout, network, unknown.
"""

from enum import Enum

from app.schemas.repository import CloneErrorType, ValidationErrorType


class GitFailure(str, Enum):
    """Transport-independent failure kind."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UNKNOWN = "unknown"


AUTH_PHRASES: tuple[str, ...] = (
    "authentication failed",
    "permission denied",
    "invalid credentials",
    "invalid username or password",
    "could not read username",
    "could not read password",
    "access denied",
    "returned error: 401",
    "returned error: 403",
    "bad credentials",
)

NOT_FOUND_PHRASES: tuple[str, ...] = (
    "repository not found",
    "not found",
    "does not exist",
    "returned error: 404",
    "not appear to be a git repository",
)

TIMEOUT_PHRASES: tuple[str, ...] = (
    "timed out",
    "timeout",
    "operation too slow",
)

NETWORK_PHRASES: tuple[str, ...] = (
    "could not resolve host",
    "could not resolve hostname",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "network is unreachable",
    "no route to host",
    "connection refused",
    "connection reset",
    "connection closed",
    "failed to connect",
    "unable to connect",
    "network",
    "connection",
    "dns",
    "enotfound",
)

_VALIDATION_ERRORS: dict[GitFailure, ValidationErrorType] = {
    GitFailure.AUTH: "AUTH_FAILED",
    GitFailure.NOT_FOUND: "NOT_FOUND",
    GitFailure.TIMEOUT: "VALIDATION_TIMEOUT",
    GitFailure.NETWORK: "NETWORK_ERROR",
    GitFailure.UNKNOWN: "UNKNOWN",
}

_CLONE_ERRORS: dict[GitFailure, CloneErrorType] = {
    GitFailure.AUTH: "AUTHENTICATION",
    GitFailure.NOT_FOUND: "REPOSITORY_NOT_FOUND",
    GitFailure.TIMEOUT: "TIMEOUT",
    GitFailure.NETWORK: "NETWORK",
    GitFailure.UNKNOWN: "UNKNOWN",
}


def _contains_any(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def classify_git_error(raw_message: str | None, *, timed_out: bool = False) -> GitFailure:
    """
    Map git/transport error text to a GitFailure.

    timed_out marks failures where the wall-clock bound was hit; it ranks after
    authentication and not-found so an early auth rejection is still reported as such.
    """
    text = (raw_message or "").lower()
    if _contains_any(text, AUTH_PHRASES):
        return GitFailure.AUTH
    if _contains_any(text, NOT_FOUND_PHRASES):
        return GitFailure.NOT_FOUND
    if timed_out or _contains_any(text, TIMEOUT_PHRASES):
        return GitFailure.TIMEOUT
    if _contains_any(text, NETWORK_PHRASES):
        return GitFailure.NETWORK
    return GitFailure.UNKNOWN


def to_validation_error(failure: GitFailure) -> ValidationErrorType:
    return _VALIDATION_ERRORS[failure]


def to_clone_error(failure: GitFailure) -> CloneErrorType:
    return _CLONE_ERRORS[failure]
