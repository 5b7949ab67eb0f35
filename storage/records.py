"""
pygpasswd Record Codec
======================
Group and shadow-group entries, and their colon-separated line format.

  group(5):   name:password:gid:member,member,...
  gshadow(5): name:password:admin,admin,...:member,member,...

Round-trip guarantee: a record parsed from a line and not modified is
written back as exactly that line, even where the line is not in
canonical form (e.g. empty list segments). Only modified records are
re-serialized.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from catalog.members import MembershipList

# Sentinel credentials: never produced by the hash function
NO_PASSWORD = ""
LOCKED_PASSWORD = "!"
SHADOW_PASSWORD = "x"

GROUP_FIELDS = 4
SHADOW_FIELDS = 4


@dataclass
class GroupRecord:
    """One entry of the group database."""
    name: str
    password: str
    gid: int
    members: MembershipList = field(default_factory=MembershipList)
    _source: Optional[str] = field(default=None, repr=False, compare=False)
    _snapshot: Optional[Tuple] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_line(cls, line: str) -> Optional["GroupRecord"]:
        """Parse a group line. Returns None if the line is not an entry."""
        fields = line.split(":")
        if len(fields) != GROUP_FIELDS or not fields[0]:
            return None
        try:
            gid = int(fields[2])
        except ValueError:
            return None
        record = cls(fields[0], fields[1], gid,
                     MembershipList.from_field(fields[3]))
        record._source = line
        record._snapshot = record._fields()
        return record

    def _fields(self) -> Tuple:
        return (self.name, self.password, str(self.gid), self.members.to_field())

    def to_line(self) -> str:
        fields = self._fields()
        if self._source is not None and fields == self._snapshot:
            return self._source
        return ":".join(fields)

    def copy(self) -> "GroupRecord":
        dup = GroupRecord(self.name, self.password, self.gid, self.members.copy())
        dup._source = self._source
        dup._snapshot = self._snapshot
        return dup


@dataclass
class ShadowRecord:
    """One entry of the shadow group database."""
    name: str
    password: str
    admins: MembershipList = field(default_factory=MembershipList)
    members: MembershipList = field(default_factory=MembershipList)
    _source: Optional[str] = field(default=None, repr=False, compare=False)
    _snapshot: Optional[Tuple] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_line(cls, line: str) -> Optional["ShadowRecord"]:
        fields = line.split(":")
        if len(fields) != SHADOW_FIELDS or not fields[0]:
            return None
        record = cls(fields[0], fields[1],
                     MembershipList.from_field(fields[2]),
                     MembershipList.from_field(fields[3]))
        record._source = line
        record._snapshot = record._fields()
        return record

    @classmethod
    def migrated_from(cls, group: GroupRecord,
                      first_member_is_admin: bool = False) -> "ShadowRecord":
        """
        Synthesize the shadow entry for a group that has none.
        The group's credential moves here and the group record is left
        pointing at the shadow file.
        """
        admins = MembershipList()
        first = group.members.first()
        if first_member_is_admin and first is not None:
            admins.add(first)
        record = cls(group.name, group.password, admins, group.members.copy())
        group.password = SHADOW_PASSWORD
        return record

    def _fields(self) -> Tuple:
        return (self.name, self.password,
                self.admins.to_field(), self.members.to_field())

    def to_line(self) -> str:
        fields = self._fields()
        if self._source is not None and fields == self._snapshot:
            return self._source
        return ":".join(fields)

    def copy(self) -> "ShadowRecord":
        dup = ShadowRecord(self.name, self.password,
                           self.admins.copy(), self.members.copy())
        dup._source = self._source
        dup._snapshot = self._snapshot
        return dup
