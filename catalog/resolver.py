"""
Permission Resolver
===================
Decides whether the caller may apply the requested mutation to the
loaded group.

Rules, in order:
  1. The superuser may do anything.
  2. Replacing the member list (-M) or the administrator list (-A)
     requires the superuser; group administrators may not.
  3. With a shadow database: the caller must be listed as an
     administrator of the group.
  4. Without one: denied, unless the legacy first-member policy is
     enabled, in which case the first listed member counts as the
     group's administrator. That policy is off unless configured.
"""

from typing import Optional

from catalog.identity import Caller
from monitoring.logger import get_logger
from transactions.errors import PermissionDenied

logger = get_logger(__name__)


class PermissionResolver:
    def __init__(self, first_member_is_admin: bool = False):
        self.first_member_is_admin = first_member_is_admin

    def check_request(self, caller: Caller, request) -> None:
        """
        Checks that need no loaded record. Run before locking so an
        unprivileged -A/-M never takes the database locks.
        """
        if request.requires_superuser and not caller.is_superuser:
            logger.warning("permission_denied", reason="superuser_required",
                           mutation=request.kind.value)
            raise PermissionDenied()

    def authorize(self, caller: Caller, request, group,
                  shadow: Optional[object] = None,
                  shadow_active: bool = False) -> None:
        """Return if the caller may proceed; raise PermissionDenied otherwise."""
        if caller.is_superuser:
            return

        self.check_request(caller, request)

        if shadow_active:
            if shadow is not None and caller.name in shadow.admins:
                return
            reason = "not_an_administrator"
        elif self.first_member_is_admin:
            if group.members.first() == caller.name:
                return
            reason = "not_first_member"
        else:
            reason = "not_superuser"

        logger.warning("permission_denied", reason=reason,
                       mutation=request.kind.value)
        raise PermissionDenied()
