"""Removal of cloned working trees: immediate, delayed (safety net), and stale sweep."""

import asyncio
import logging
import os
import shutil
import time

from app.schemas.repository import CleanupResult

logger = logging.getLogger(__name__)

# A path is only ever deleted if it contains one of these.
SAFE_PATH_MARKERS = ("/tmp/", "/temp/", "scan-repos", "cloned-repos")
DEFAULT_CLEANUP_DELAY_SEC = 300.0

# Strong references to pending delayed cleanups so they are not garbage collected mid-sleep.
_scheduled: set[asyncio.Task] = set()


def is_safe_path(path: str) -> bool:
    """True when an absolute path contains a recognised clone-area marker."""
    return any(marker in path for marker in SAFE_PATH_MARKERS)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def cleanup_repository(path: str | None) -> CleanupResult:
    """
    Recursively delete a cloned repository directory.

    Paths without a safe marker are refused before any filesystem access. A missing path
    counts as success (idempotent). Errors are reported in the result, never raised.
    """
    start = time.perf_counter()
    if not path or not isinstance(path, str):
        return CleanupResult(success=False, error="Repository path is required")

    absolute_path = os.path.abspath(path)
    if not is_safe_path(absolute_path):
        logger.warning("Refusing to delete directory outside safe paths: %s", absolute_path)
        return CleanupResult(
            success=False,
            error=f"Refusing to delete directory outside safe paths: {absolute_path}",
            duration_ms=_elapsed_ms(start),
        )

    if not os.path.lexists(absolute_path):
        return CleanupResult(
            success=True, deleted_path=absolute_path, duration_ms=_elapsed_ms(start)
        )

    try:
        if os.path.isdir(absolute_path) and not os.path.islink(absolute_path):
            await asyncio.to_thread(shutil.rmtree, absolute_path)
        else:
            await asyncio.to_thread(os.unlink, absolute_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        return CleanupResult(
            success=False,
            error=str(e) or "Unknown cleanup error",
            deleted_path=None,
            duration_ms=_elapsed_ms(start),
        )
    return CleanupResult(
        success=True, deleted_path=absolute_path, duration_ms=_elapsed_ms(start)
    )


async def _delayed_cleanup(path: str, delay: float) -> CleanupResult:
    await asyncio.sleep(delay)
    result = await cleanup_repository(path)
    if result.success:
        logger.info("Scheduled cleanup removed %s", result.deleted_path)
    else:
        logger.error("Scheduled cleanup failed for %s: %s", path, result.error)
    return result


def schedule_cleanup(path: str, delay: float = DEFAULT_CLEANUP_DELAY_SEC) -> asyncio.Task:
    """
    Remove path after delay seconds on the running event loop. Best effort: outcomes are
    logged only. Cancel the returned task to abort.
    """
    task = asyncio.get_running_loop().create_task(_delayed_cleanup(path, delay))
    _scheduled.add(task)
    task.add_done_callback(_scheduled.discard)
    return task


async def sweep_stale_clones(root: str, max_age_seconds: float) -> tuple[int, int]:
    """
    Delete entries directly under root whose mtime is older than max_age_seconds.

    Returns (removed, failed). Idempotent: safe to run repeatedly. Catches clones whose
    delayed cleanup never ran (process restart).
    """
    absolute_root = os.path.abspath(root)
    if not is_safe_path(absolute_root + os.sep):
        logger.warning("Clone root is outside safe paths; skipping sweep: %s", absolute_root)
        return (0, 0)
    if not os.path.isdir(absolute_root):
        logger.info("Clone root %s does not exist; nothing to sweep.", absolute_root)
        return (0, 0)

    cutoff = time.time() - max_age_seconds
    removed = failed = 0
    with os.scandir(absolute_root) as entries:
        stale = []
        for entry in entries:
            try:
                if entry.stat(follow_symlinks=False).st_mtime < cutoff:
                    stale.append(entry.path)
            except FileNotFoundError:
                continue
    for path in sorted(stale):
        result = await cleanup_repository(path)
        if result.success:
            removed += 1
        else:
            failed += 1
            logger.error("Sweep failed to remove %s: %s", path, result.error)

    if removed or failed:
        logger.info(
            "Clone sweep: root=%s, removed=%s, failed=%s", absolute_root, removed, failed
        )
    return (removed, failed)
