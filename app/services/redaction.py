"""Strip secrets from git output and error messages before they are returned or logged."""

import re
from collections.abc import Iterable
from urllib.parse import quote

REDACTED = "[REDACTED]"

# PEM blocks (private keys, certificates) including the armor lines.
_PEM_BLOCK_PATTERN = re.compile(
    r"-----BEGIN [A-Z0-9 ]+-----.*?-----END [A-Z0-9 ]+-----",
    re.DOTALL,
)
# A PEM header whose END line was truncated away by the producer.
_PEM_HEADER_PATTERN = re.compile(r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----.*", re.DOTALL)
# scheme://user:token@ or scheme://token@
_URL_USERINFO_PATTERN = re.compile(r"([a-zA-Z][a-zA-Z0-9+.\-]*://)[^/@\s]+@")
# GitHub classic/fine-grained, GitLab and Bitbucket token shapes.
_TOKEN_PATTERN = re.compile(
    r"\b(?:gh[pousr]_[A-Za-z0-9]{4,}"
    r"|github_pat_[A-Za-z0-9_]{8,}"
    r"|glpat-[A-Za-z0-9_\-]{8,}"
    r"|ATBB[A-Za-z0-9]{8,})"
)

# Literal secrets shorter than this are not substituted (too likely to hit ordinary text).
MIN_LITERAL_SECRET_LENGTH = 4


def redact_secrets(text: str | None, secrets: Iterable[str | None] = ()) -> str:
    """
    Replace credential material in text with a fixed placeholder.

    Covers inline URL credentials, PEM blocks, common personal access token prefixes,
    and any literal secret passed in (raw and URL-quoted forms).
    """
    if not text:
        return ""
    redacted = text
    for secret in secrets:
        if not secret or len(secret) < MIN_LITERAL_SECRET_LENGTH:
            continue
        for form in {secret, quote(secret, safe="")}:
            redacted = redacted.replace(form, REDACTED)
    redacted = _PEM_BLOCK_PATTERN.sub(REDACTED, redacted)
    redacted = _PEM_HEADER_PATTERN.sub(REDACTED, redacted)
    redacted = _URL_USERINFO_PATTERN.sub(rf"\1{REDACTED}@", redacted)
    redacted = _TOKEN_PATTERN.sub(REDACTED, redacted)
    return redacted
