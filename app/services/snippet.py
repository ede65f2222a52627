"""Extract source excerpts around finding locations from a cloned repository."""

import logging
import os
from typing import Any

from app.schemas.repository import CodeLocation

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 2
DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
# Leading bytes inspected for NUL when detecting binary files.
BINARY_PROBE_BYTES = 8000
# Lines returned when the reported line is past the end of the file.
FALLBACK_TAIL_LINES = 5
EVIDENCE_KEY = "codeLocation"


def _is_within(root: str, path: str) -> bool:
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        return False


def extract_code_snippet(
    repo_root: str,
    file_path: str,
    line_number: int,
    repository_url: str,
    commit_hash: str,
    branch: str | None = None,
    *,
    context_lines: int = DEFAULT_CONTEXT_LINES,
    max_file_size: int = DEFAULT_MAX_FILE_BYTES,
) -> CodeLocation | None:
    """
    Return up to context_lines lines either side of line_number in file_path.

    Returns None for paths outside repo_root, missing files, directories, files larger than
    max_file_size, binary files, non-UTF-8 content and line numbers below 1. A line number
    past the end of the file yields the last five lines with line_number clamped to the
    line count.
    """
    root = os.path.realpath(repo_root)
    full_path = os.path.realpath(os.path.join(root, file_path))
    if not _is_within(root, full_path):
        logger.warning("Snippet path escapes repository root: %s", file_path)
        return None
    if not os.path.exists(full_path):
        logger.warning("Snippet file not found: %s", file_path)
        return None
    if os.path.isdir(full_path):
        logger.warning("Snippet path is a directory: %s", file_path)
        return None

    try:
        size = os.path.getsize(full_path)
        if size > max_file_size:
            logger.warning("Snippet file too large (%s bytes): %s", size, file_path)
            return None
        with open(full_path, "rb") as fh:
            data = fh.read()
    except OSError as e:
        logger.warning("Failed to read snippet file %s: %s", file_path, e)
        return None

    if b"\x00" in data[:BINARY_PROBE_BYTES]:
        logger.warning("Binary file detected: %s", file_path)
        return None
    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Failed to read as UTF-8: %s", file_path)
        return None

    lines = content.split("\n")
    line_count = len(lines)
    if line_number < 1:
        logger.warning("Line number %s out of range (1-%s): %s", line_number, line_count, file_path)
        return None
    if line_number > line_count:
        logger.warning("Line number %s out of range (1-%s): %s", line_number, line_count, file_path)
        start_index = max(0, line_count - FALLBACK_TAIL_LINES)
        return CodeLocation(
            file_path=file_path,
            line_number=line_count,
            code_snippet="\n".join(lines[start_index:]),
            start_line=start_index + 1,
            end_line=line_count,
            repository_url=repository_url,
            commit_hash=commit_hash,
            branch=branch,
        )

    target_index = line_number - 1
    start_index = max(0, target_index - context_lines)
    end_index = min(line_count - 1, target_index + context_lines)
    return CodeLocation(
        file_path=file_path,
        line_number=line_number,
        code_snippet="\n".join(lines[start_index : end_index + 1]),
        start_line=start_index + 1,
        end_line=end_index + 1,
        repository_url=repository_url,
        commit_hash=commit_hash,
        branch=branch,
    )


def extract_code_snippets(
    repo_root: str,
    locations: list[tuple[str, int]],
    repository_url: str,
    commit_hash: str,
    branch: str | None = None,
    *,
    context_lines: int = DEFAULT_CONTEXT_LINES,
    max_file_size: int = DEFAULT_MAX_FILE_BYTES,
) -> dict[str, CodeLocation | None]:
    """Batch extraction keyed "path:line"; order follows locations."""
    results: dict[str, CodeLocation | None] = {}
    for file_path, line_number in locations:
        results[f"{file_path}:{line_number}"] = extract_code_snippet(
            repo_root,
            file_path,
            line_number,
            repository_url,
            commit_hash,
            branch,
            context_lines=context_lines,
            max_file_size=max_file_size,
        )
    return results


def attach_code_location(
    evidence: dict[str, Any] | None, location: CodeLocation | None
) -> dict[str, Any]:
    """Return a copy of a finding's evidence with the code location stored under codeLocation."""
    enriched = dict(evidence or {})
    if location is not None:
        enriched[EVIDENCE_KEY] = location.model_dump(mode="json")
    return enriched
