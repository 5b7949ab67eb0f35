"""
Identity Store
==============
Read-only oracle over the user database. Answers two questions:
  - does a user with this name exist?
  - what is the name of the user with this uid? (caller lookup)

Two backends:
  - SystemIdentityStore: the running system's NSS via the pwd module
  - PasswdFileIdentityStore: a passwd(5)-format file
"""

import os
import pwd
from dataclasses import dataclass
from typing import Dict, Optional

from transactions.errors import ConfigError, PermissionDenied

SUPERUSER_UID = 0


@dataclass(frozen=True)
class Caller:
    """Who invoked the command."""
    name: str
    uid: int

    @property
    def is_superuser(self) -> bool:
        return self.uid == SUPERUSER_UID


class SystemIdentityStore:
    """Identity lookups through the system user database."""

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def name_for_uid(self, uid: int) -> Optional[str]:
        try:
            return pwd.getpwuid(uid).pw_name
        except KeyError:
            return None


class PasswdFileIdentityStore:
    """Identity lookups against a passwd-format file, read once."""

    def __init__(self, path: str):
        self.path = path
        self._uids: Dict[str, int] = {}
        self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise ConfigError(f"cannot read user database {self.path}: {e}")

        for line in lines:
            if not line or line.startswith("#"):
                continue
            fields = line.split(":")
            if len(fields) < 3:
                continue
            try:
                uid = int(fields[2])
            except ValueError:
                continue
            # First entry wins, as getpwnam would return it
            self._uids.setdefault(fields[0], uid)

    def user_exists(self, name: str) -> bool:
        return name in self._uids

    def name_for_uid(self, uid: int) -> Optional[str]:
        for name, entry_uid in self._uids.items():
            if entry_uid == uid:
                return name
        return None


def make_identity_store(passwd_path: Optional[str] = None):
    if passwd_path is None:
        return SystemIdentityStore()
    return PasswdFileIdentityStore(passwd_path)


def current_caller(identity, uid: Optional[int] = None) -> Caller:
    """
    Resolve the invoking user from the real uid.
    Raises PermissionDenied if the uid has no user entry.
    """
    if uid is None:
        uid = os.getuid()
    name = identity.name_for_uid(uid)
    if name is None:
        raise PermissionDenied("Who are you?")
    return Caller(name=name, uid=uid)
