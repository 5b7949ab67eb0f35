from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class MutationKind(Enum):
    CHANGE_PASSWORD = "change-password"
    CLEAR_PASSWORD = "clear-password"
    RESTRICT = "restrict"
    ADD_MEMBER = "add-member"
    REMOVE_MEMBER = "remove-member"
    REPLACE_LISTS = "replace-lists"   # -A and/or -M


@dataclass(frozen=True)
class MutationRequest:
    """
    Everything one invocation asks for, built once from the command line
    and passed down unchanged.
    """
    group: str
    kind: MutationKind
    user: Optional[str] = field(default=None)      # -a / -d
    members: Optional[str] = field(default=None)   # -M csv
    admins: Optional[str] = field(default=None)    # -A csv

    @property
    def requires_superuser(self) -> bool:
        return self.kind == MutationKind.REPLACE_LISTS

    def describe(self) -> str:
        if self.kind == MutationKind.REPLACE_LISTS:
            parts = []
            if self.admins is not None:
                parts.append("replace-admins")
            if self.members is not None:
                parts.append("replace-members")
            return "+".join(parts)
        return self.kind.value
