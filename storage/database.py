"""
pygpasswd Database Files
========================
The group and shadow-group databases as flat files of colon-separated
entries.

Interface (what the transaction consumes):
  lock() / unlock()         exclusive lock file, see concurrency.lock_manager
  open_read() / open_write()
  locate(name)              exact, case-sensitive lookup
  update(record)            replace the entry with that name, or append
  close()                   for write handles: persist, then drop state

Safety guarantees:
  - Atomic writes: new contents go to a temp file in the same directory,
    are fsynced, then os.replace()d over the database. A crash leaves
    either the old or the new file, never a mix.
  - Before replacing, the previous contents are saved as <db>- (backup).
  - Lines that are not valid entries (comments, NIS "+" lines, damage)
    are carried through untouched.
  - A handle opened for write that was never updated writes nothing.
"""

import os
import tempfile
from typing import List, Optional, Union

from concurrency.lock_manager import FileLock, LockResult
from monitoring.logger import get_logger
from storage.records import GroupRecord, ShadowRecord
from transactions.errors import WriteError

logger = get_logger(__name__)

BACKUP_SUFFIX = "-"
ENCODING = "utf-8"
ERRORS = "surrogateescape"


class _DatabaseFile:
    """Common machinery for a colon-separated database file."""

    record_class = None
    label = "database"

    def __init__(self, path: str, lock_timeout: float = 0.0):
        self.path = os.path.abspath(path)
        self._lock = FileLock(self.path, timeout=lock_timeout)
        self._entries: List[Union[str, GroupRecord, ShadowRecord]] = []
        self._mode: Optional[str] = None
        self._dirty = False
        self._trailing_newline = True
        self.original_bytes: Optional[bytes] = None

    # ─── Locking ────────────────────────────────────────────────────

    @property
    def locked(self) -> bool:
        return self._lock.held

    def lock(self) -> LockResult:
        return self._lock.acquire()

    def unlock(self) -> bool:
        return self._lock.release()

    # ─── Open / Close ───────────────────────────────────────────────

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def open_read(self) -> None:
        self._open("r")

    def open_write(self) -> None:
        if not self.locked:
            raise WriteError(f"cannot open the {self.label} for writing without its lock")
        self._open("w")

    def close(self) -> None:
        """
        Close the handle. For a write handle with pending updates this
        commits them to disk and raises WriteError if that fails.
        """
        try:
            if self._mode == "w" and self._dirty:
                self._write(self._render())
        finally:
            self._mode = None
            self._dirty = False
            self._entries = []

    @property
    def is_open(self) -> bool:
        return self._mode is not None

    # ─── Record Operations ──────────────────────────────────────────

    def locate(self, name: str):
        """Return a copy of the entry named `name`, or None."""
        self._check_open()
        for entry in self._entries:
            if not isinstance(entry, str) and entry.name == name:
                return entry.copy()
        return None

    def update(self, record) -> None:
        """Replace the entry with the record's name, or append it."""
        self._check_open()
        if self._mode != "w":
            raise WriteError(f"cannot update the {self.label}: opened read-only")
        for i, entry in enumerate(self._entries):
            if not isinstance(entry, str) and entry.name == record.name:
                self._entries[i] = record.copy()
                break
        else:
            self._entries.append(record.copy())
        self._dirty = True

    def names(self) -> List[str]:
        self._check_open()
        return [e.name for e in self._entries if not isinstance(e, str)]

    # ─── Restore (compensation after a failed sibling write) ────────

    def restore(self, content: bytes) -> None:
        """
        Atomically put back `content` as the database. Raises WriteError.
        The `-` backup is left alone: it already holds the last good copy.
        """
        self._write(content, backup=False)

    # ─── Internal ───────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._mode is None:
            raise WriteError(f"the {self.label} is not open")

    def _open(self, mode: str) -> None:
        try:
            with open(self.path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise WriteError(f"cannot open the {self.label}: {e}")

        text = data.decode(ENCODING, ERRORS)
        self._trailing_newline = text.endswith("\n") or not text
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()

        entries = []
        for line in lines:
            record = self.record_class.from_line(line)
            entries.append(record if record is not None else line)

        self.original_bytes = data
        self._entries = entries
        self._mode = mode
        self._dirty = False

    def _render(self) -> bytes:
        lines = [e if isinstance(e, str) else e.to_line() for e in self._entries]
        text = "\n".join(lines)
        if lines and self._trailing_newline:
            text += "\n"
        return text.encode(ENCODING, ERRORS)

    def _write(self, content: bytes, backup: bool = True) -> None:
        directory = os.path.dirname(self.path)
        try:
            st = os.stat(self.path)
        except OSError as e:
            raise WriteError(f"cannot rewrite the {self.label}: {e}")

        if backup:
            self._backup(st)

        tmp_path = None
        try:
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=os.path.basename(self.path) + ".", suffix=".tmp")
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, st.st_mode & 0o7777)
            self._copy_owner(tmp_path, st)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise WriteError(f"cannot rewrite the {self.label}: {e}")
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def _backup(self, st) -> None:
        backup_path = self.path + BACKUP_SUFFIX
        try:
            with open(self.path, "rb") as src:
                data = src.read()
            fd = os.open(backup_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                         st.st_mode & 0o7777)
            with os.fdopen(fd, "wb") as dst:
                dst.write(data)
                dst.flush()
                os.fsync(dst.fileno())
            self._copy_owner(backup_path, st)
        except OSError as e:
            raise WriteError(f"cannot create backup of the {self.label}: {e}")

    def _copy_owner(self, path: str, st) -> None:
        own = os.stat(path)
        if (own.st_uid, own.st_gid) != (st.st_uid, st.st_gid):
            os.chown(path, st.st_uid, st.st_gid)


class GroupDatabase(_DatabaseFile):
    """The group database (group(5))."""
    record_class = GroupRecord
    label = "group file"


class ShadowDatabase(_DatabaseFile):
    """The shadow group database (gshadow(5))."""
    record_class = ShadowRecord
    label = "shadow group file"
