"""Role based permission predicate.

Principals carry roles; roles grant permission strings. A procedure is
accessible when the principal holds every permission it requires.
"""

import hashlib
from typing import Iterable, Optional

from shared.config import DEFAULT_ROLE_PERMISSIONS
from shared.models import Principal

ADMIN_ROLE = "administrator"


class RolePermissionPredicate:
    """
    Answers "does this principal satisfy these access requirements".

    Requirements are combined with AND. The administrator role passes every
    check. An empty requirement set is permitted only when
    ``allow_empty_requirements`` is set; by default it is denied.
    """

    def __init__(
        self,
        role_permissions: Optional[dict[str, list[str]]] = None,
        allow_empty_requirements: bool = False
    ) -> None:
        source = role_permissions if role_permissions is not None else DEFAULT_ROLE_PERMISSIONS
        self._grants: dict[str, frozenset[str]] = {
            role: frozenset(perms) for role, perms in source.items()
        }
        self.allow_empty_requirements = allow_empty_requirements

    def effective_roles(self, principal: Principal) -> frozenset[str]:
        """Roles of the principal, including the implicit base role."""
        roles = set(principal.roles)
        roles.add("anonymous" if principal.is_anonymous else "authenticated")
        return frozenset(roles)

    def granted(self, principal: Principal) -> frozenset[str]:
        """All permissions granted to the principal."""
        granted: set[str] = set()
        for role in self.effective_roles(principal):
            granted |= self._grants.get(role, frozenset())
        return frozenset(granted)

    def permits(self, principal: Principal, requirements: Iterable[str]) -> bool:
        """Check whether the principal holds every required permission."""
        required = set(requirements)
        if ADMIN_ROLE in self.effective_roles(principal):
            return True
        if not required:
            return self.allow_empty_requirements
        return required <= self.granted(principal)

    def is_anonymous(self, principal: Principal) -> bool:
        return principal.is_anonymous

    def fingerprint(self, principal: Principal) -> str:
        """
        Hash identifying the permission context of a principal.

        Two principals with equal fingerprints get identical answers from
        ``permits`` for every requirement set.
        """
        roles = ",".join(sorted(self.effective_roles(principal)))
        return hashlib.sha256(roles.encode("utf-8")).hexdigest()
