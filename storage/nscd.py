"""
Name-service cache invalidation.

After a committed change, tell nscd that its "group" tables are stale.
Fire-and-forget: a missing nscd or a failing invalidation is logged and
otherwise ignored.
"""

import subprocess

from monitoring.logger import get_logger

logger = get_logger(__name__)


def flush_cache(database: str, nscd_path: str = "nscd", timeout: float = 5.0) -> bool:
    """Run `nscd -i <database>`. Returns True if nscd accepted it."""
    try:
        result = subprocess.run(
            [nscd_path, "-i", database],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        logger.debug("nscd_not_installed", nscd=nscd_path)
        return False
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("nscd_flush_failed", database=database, error=str(e))
        return False

    if result.returncode != 0:
        logger.warning("nscd_flush_failed", database=database,
                       returncode=result.returncode)
        return False
    logger.info("nscd_flushed", database=database)
    return True
