
# pygpasswd Catalog Package
# =========================
# Who users are, which of them belong to a group, and who may change it.

from catalog.members import MembershipList
from catalog.identity import (
    Caller, SystemIdentityStore, PasswdFileIdentityStore,
    make_identity_store, current_caller,
)
from catalog.resolver import PermissionResolver
