"""
Membership List
===============
Ordered set of user names, as stored in the members field of a group
entry and the members/administrators fields of a shadow entry.

Invariants:
  - No duplicates: add() of a present name is a no-op.
  - Never contains the empty string.
  - Order is insertion order; replace() keeps order of first occurrence.
"""

from typing import Iterable, Iterator, List

from transactions.errors import InvalidMember


def split_names(csv: str) -> List[str]:
    """Split a comma-separated field, dropping empty segments."""
    return [name for name in csv.split(",") if name]


class MembershipList:
    """Ordered, duplicate-free list of user names."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: List[str] = []
        self.replace(names)

    # ─── Construction ───────────────────────────────────────────────

    @classmethod
    def from_field(cls, field: str) -> "MembershipList":
        """Build from an on-disk field ("alice,bob"). No validation."""
        return cls(split_names(field))

    @classmethod
    def parse(cls, csv: str, identity) -> "MembershipList":
        """
        Build from user input, validating every name against the
        identity store. Raises InvalidMember for the first unknown name;
        nothing is returned on failure.
        """
        names = split_names(csv)
        for name in names:
            if not identity.user_exists(name):
                raise InvalidMember(name)
        return cls(names)

    # ─── Mutation ───────────────────────────────────────────────────

    def add(self, name: str) -> bool:
        """Insert name if absent. Returns True if it was inserted."""
        if not name:
            raise ValueError("member name must not be empty")
        if name in self._names:
            return False
        self._names.append(name)
        return True

    def remove(self, name: str) -> bool:
        """Remove name if present. Returns whether it was present."""
        try:
            self._names.remove(name)
        except ValueError:
            return False
        return True

    def replace(self, names: Iterable[str]) -> None:
        fresh: List[str] = []
        for name in names:
            if not name:
                raise ValueError("member name must not be empty")
            if name not in fresh:
                fresh.append(name)
        self._names = fresh

    def copy(self) -> "MembershipList":
        return MembershipList(self._names)

    # ─── Query ──────────────────────────────────────────────────────

    def contains(self, name: str) -> bool:
        return name in self._names

    def first(self):
        return self._names[0] if self._names else None

    def to_field(self) -> str:
        return ",".join(self._names)

    def __contains__(self, name) -> bool:
        return self.contains(name)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other) -> bool:
        if isinstance(other, MembershipList):
            return self._names == other._names
        if isinstance(other, (list, tuple)):
            return self._names == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"MembershipList({self._names!r})"
