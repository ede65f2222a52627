"""
CLI entrypoint for the stale clone sweep. Run from cron, e.g.:

  python -m app.cleanup

Or every 15 minutes: */15 * * * * cd /path/to/ghostshell && .venv/bin/python -m app.cleanup
"""

import asyncio
import logging
import sys

from app.core.config import get_settings
from app.services.repo_cleanup import sweep_stale_clones

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Remove cloned repositories under CLONE_ROOT_DIR older than CLEANUP_MAX_AGE_HOURS."""
    settings = get_settings()
    try:
        removed, failed = asyncio.run(
            sweep_stale_clones(
                settings.CLONE_ROOT_DIR, settings.CLEANUP_MAX_AGE_HOURS * 3600
            )
        )
    except Exception as e:
        logger.exception("Clone sweep failed: %s", e)
        return 1
    logger.info("Clone sweep completed: removed=%s, failed=%s", removed, failed)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
