"""
pygpasswd Lock Manager
======================
Exclusive, system-wide locks on the group databases.

Design rules:
  - One lock file per database: <db>.lock, containing the holder's pid
  - Created atomically: write <db>.<pid>, then hard-link it to <db>.lock
    (link() fails if the lock exists, on every filesystem that matters)
  - A lock whose recorded pid is no longer running is stale and reclaimed,
    by renaming it aside first so a fresh lock is never deleted
  - Every lock taken is released exactly once

Single-threaded: no in-process mutex is needed, mutual exclusion is
between processes.
"""

import os
import time
from enum import Enum
from typing import Optional, Tuple

from monitoring.logger import get_logger

logger = get_logger(__name__)

LOCK_SUFFIX = ".lock"


class LockResult(Enum):
    GRANTED = "GRANTED"
    TIMEOUT = "TIMEOUT"
    FAILED = "FAILED"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _read_lock(path: str) -> Tuple[Optional[Tuple[int, int]], Optional[int]]:
    """
    (device, inode) and recorded pid of a lock file, read through one
    descriptor. The identity is None if the file does not exist.
    """
    try:
        f = open(path, "r", encoding="ascii", errors="replace")
    except FileNotFoundError:
        return None, None
    except OSError:
        return (0, 0), None
    with f:
        st = os.fstat(f.fileno())
        try:
            pid = int(f.read().strip())
        except ValueError:
            pid = None
    return (st.st_dev, st.st_ino), pid


class FileLock:
    """Exclusive lock on one database file."""

    def __init__(self, db_path: str, timeout: float = 0.0,
                 poll_interval: float = 0.1):
        self.db_path = db_path
        self.lock_path = db_path + LOCK_SUFFIX
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> LockResult:
        """
        Take the lock, retrying until `timeout` seconds have elapsed.

        Returns:
          GRANTED  lock taken
          TIMEOUT  another live process holds it
          FAILED   the lock file could not be created (permissions, I/O)
        """
        if self._held:
            return LockResult.GRANTED

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                if self._try_link():
                    self._held = True
                    return LockResult.GRANTED
            except OSError as e:
                logger.warning("lock_create_failed", path=self.lock_path, error=str(e))
                return LockResult.FAILED

            if self._reclaim_stale():
                continue

            if time.monotonic() >= deadline:
                return LockResult.TIMEOUT
            time.sleep(self.poll_interval)

    def release(self) -> bool:
        """Remove the lock file. Returns False if it could not be removed."""
        if not self._held:
            return True
        self._held = False
        try:
            os.unlink(self.lock_path)
        except FileNotFoundError:
            logger.warning("lock_vanished", path=self.lock_path)
        except OSError as e:
            logger.warning("unlock_failed", path=self.lock_path, error=str(e))
            return False
        return True

    def holder_pid(self) -> Optional[int]:
        """Pid recorded in the lock file, or None."""
        return _read_lock(self.lock_path)[1]

    # ─── Internal ────────────────────────────────────────────────────

    def _try_link(self) -> bool:
        tmp_path = f"{self.db_path}.{os.getpid()}"
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(f"{os.getpid()}")
            try:
                os.link(tmp_path, self.lock_path)
            except FileExistsError:
                return False
            return True
        finally:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass

    def _reclaim_stale(self) -> bool:
        """
        Remove the lock file if its holder is gone. True if removed.

        The file judged stale is first renamed to a private name, then
        compared with what was read. If another waiter replaced it with a
        fresh lock in the meantime, that lock is linked back in place.
        """
        identity, pid = _read_lock(self.lock_path)
        if identity is None:
            # Released between our attempt and now
            return True
        if pid is not None and pid > 0 and _pid_alive(pid):
            return False

        aside = f"{self.lock_path}.stale.{os.getpid()}"
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("stale_lock_unremovable", path=self.lock_path, error=str(e))
            return False

        try:
            if _read_lock(aside) != (identity, pid):
                try:
                    os.link(aside, self.lock_path)
                except FileExistsError:
                    logger.error("lock_replaced_twice", path=self.lock_path)
                except OSError as e:
                    logger.error("lock_not_restored", path=self.lock_path, error=str(e))
                return False
        finally:
            try:
                os.unlink(aside)
            except OSError as e:
                logger.warning("stale_lock_unremovable", path=aside, error=str(e))
        logger.warning("stale_lock_reclaimed", path=self.lock_path, pid=pid)
        return True
