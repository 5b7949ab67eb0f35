"""
pygpasswd Mutation Engine
=========================
Applies exactly one requested change to the loaded group/shadow pair.

Pipeline: prepare() (validate input, before any lock) →
          apply() (mutate the records held by the transaction).

Member lists of the group and shadow entries move together: whatever
add/remove/replace does to one it does to the other.
"""

from dataclasses import dataclass
from typing import Optional

from catalog.identity import Caller
from catalog.members import MembershipList
from execution.context import MutationKind, MutationRequest
from monitoring.logger import get_logger
from storage.records import LOCKED_PASSWORD, NO_PASSWORD
from transactions.errors import BadArgument, InvalidMember, NotAMember

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedMutation:
    """A request whose user input has been validated."""
    request: MutationRequest
    members: Optional[MembershipList] = None
    admins: Optional[MembershipList] = None


class MutationEngine:
    """
    Executes mutation requests against a loaded GroupTransaction.
    """
    def __init__(self, identity, renderer, prompter=None, terminal=None):
        self.identity = identity
        self.renderer = renderer
        self.prompter = prompter
        self.terminal = terminal

    def prepare(self, request: MutationRequest, shadow_active: bool) -> PreparedMutation:
        """
        Validate everything that does not need the group entry.
        Raises InvalidMember or BadArgument; nothing is locked yet.
        """
        if request.kind == MutationKind.ADD_MEMBER:
            if not self.identity.user_exists(request.user):
                raise InvalidMember(request.user)
            return PreparedMutation(request)

        if request.kind == MutationKind.REPLACE_LISTS:
            admins = None
            members = None
            if request.admins is not None:
                if not shadow_active:
                    raise BadArgument("shadow group passwords required for -A")
                admins = MembershipList.parse(request.admins, self.identity)
            if request.members is not None:
                members = MembershipList.parse(request.members, self.identity)
            return PreparedMutation(request, members=members, admins=admins)

        return PreparedMutation(request)

    def apply(self, txn, prepared: PreparedMutation, caller: Caller) -> None:
        """Mutate txn.group / txn.shadow, then mark the transaction MUTATED."""
        request = prepared.request
        handler = {
            MutationKind.CLEAR_PASSWORD: self._clear_password,
            MutationKind.RESTRICT: self._restrict,
            MutationKind.ADD_MEMBER: self._add_member,
            MutationKind.REMOVE_MEMBER: self._remove_member,
            MutationKind.REPLACE_LISTS: self._replace_lists,
            MutationKind.CHANGE_PASSWORD: self._change_password,
        }[request.kind]
        handler(txn, prepared)
        txn.mark_mutated()
        logger.info("group_mutated", mutation=request.describe(), by=caller.name)

    # ─── Mutations ──────────────────────────────────────────────────

    def _clear_password(self, txn, prepared: PreparedMutation) -> None:
        self._set_both_passwords(txn, NO_PASSWORD)

    def _restrict(self, txn, prepared: PreparedMutation) -> None:
        self._set_both_passwords(txn, LOCKED_PASSWORD)

    def _add_member(self, txn, prepared: PreparedMutation) -> None:
        user = prepared.request.user
        self.renderer.render_message(f"Adding user {user} to group {txn.name}")
        txn.group.members.add(user)
        if txn.shadow is not None:
            txn.shadow.members.add(user)

    def _remove_member(self, txn, prepared: PreparedMutation) -> None:
        user = prepared.request.user
        self.renderer.render_message(f"Removing user {user} from group {txn.name}")
        removed = txn.group.members.remove(user)
        if txn.shadow is not None:
            removed = txn.shadow.members.remove(user) or removed
        if not removed:
            raise NotAMember(user, txn.name)

    def _replace_lists(self, txn, prepared: PreparedMutation) -> None:
        if prepared.admins is not None:
            txn.shadow.admins.replace(prepared.admins)
            logger.info("administrators_set", admins=prepared.admins.to_field())
        if prepared.members is not None:
            txn.group.members.replace(prepared.members)
            if txn.shadow is not None:
                txn.shadow.members.replace(prepared.members)
            logger.info("members_set", members=prepared.members.to_field())

    def _change_password(self, txn, prepared: PreparedMutation) -> None:
        self.prompter.require_terminal()
        if self.terminal is not None:
            self.terminal.save()
            txn.add_cleanup(self.terminal.restore)

        self.renderer.render_message(f"Changing the password for group {txn.name}")
        hashed = self.prompter.read_new_password()
        if txn.shadow is not None:
            txn.shadow.password = hashed
        else:
            txn.group.password = hashed

    # ─── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _set_both_passwords(txn, value: str) -> None:
        txn.group.password = value
        if txn.shadow is not None:
            txn.shadow.password = value
