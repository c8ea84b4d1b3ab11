from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Optional, Set
import logging

from flask import abort
from flask_jwt_extended import get_jwt

from groomery.constants.permissions import (
    FALLBACK_ROLE, Permission, default_permissions, expand_wildcard, is_valid_permission,
    permission_values, validate_permissions,
)
from groomery.errors import RemoteUnavailable, RoleNotFound
from groomery.models.store import utcnow
from groomery.services.cache import PermissionCache
from groomery.services.mappings import BranchRoleAssignment, UserRoleMapping, UserRoleMappingStore
from groomery.services.roles import RoleCatalog

logger = logging.getLogger(__name__)

# Which precedence rule produced a resolution
SOURCE_BRANCH = 'branch'
SOURCE_DEFAULT_BRANCH = 'default_branch'
SOURCE_ANY_BRANCH = 'any_branch'
SOURCE_FALLBACK = 'fallback'


@dataclass(frozen=True)
class ResolvedRole:
    role: str
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    branch_id: Optional[str] = None
    source: str = SOURCE_FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'role': self.role,
            'permissions': permission_values(self.permissions),
            'branch_id': self.branch_id,
        }

    def to_claims(self, updated_at: Optional[datetime] = None) -> Dict[str, Any]:
        claims = self.to_dict()
        claims['updated_at'] = (updated_at or utcnow()).isoformat()
        if Permission.ALL in self.permissions:
            claims['is_admin'] = True
        return claims

    def matches_claims(self, claims: Optional[Dict[str, Any]]) -> bool:
        """Compare against an attached claims payload, ignoring ``updated_at``."""
        if not claims:
            return False
        return (
            claims.get('role') == self.role
            and sorted(claims.get('permissions') or []) == permission_values(self.permissions)
            and claims.get('branch_id') == self.branch_id
        )


class RoleResolver:
    """Effective role for a user, optionally within a branch.

    Precedence: requested branch, then the user's default branch, then the remaining active
    assignment with the lowest branch id, then the least-privilege ``staff`` fallback. Role
    permission sets come through the cache; the user's own assignments are read fresh every time.
    """

    def __init__(self, catalog: RoleCatalog, mappings: UserRoleMappingStore, cache: PermissionCache,
                 now: Callable[[], datetime] = utcnow):
        self.catalog = catalog
        self.mappings = mappings
        self.cache = cache
        self._now = now

    def fallback(self) -> ResolvedRole:
        return ResolvedRole(
            role=FALLBACK_ROLE,
            permissions=default_permissions(FALLBACK_ROLE),
            branch_id=None,
            source=SOURCE_FALLBACK,
        )

    def resolve(self, user_id: str, branch_id: Optional[str] = None) -> ResolvedRole:
        try:
            mapping = self.mappings.get(user_id)
        except RemoteUnavailable:
            logger.warning('Role store unavailable resolving %s; using %s fallback', user_id, FALLBACK_ROLE)
            return self.fallback()
        except (KeyError, TypeError, ValueError) as e:
            logger.warning('Unreadable role mapping for %s (%s); using %s fallback', user_id, e, FALLBACK_ROLE)
            return self.fallback()
        return self.resolve_mapping(mapping, branch_id)

    def resolve_stored(self, user_id: str) -> ResolvedRole:
        """Default-branch view built only from what the store returned.

        Unlike ``resolve`` a store outage is raised, never replaced by the fallback role.
        """
        return self.resolve_mapping(self.mappings.get(user_id), strict=True)

    def resolve_mapping(self, mapping: Optional[UserRoleMapping], branch_id: Optional[str] = None,
                        strict: bool = False) -> ResolvedRole:
        if mapping is None:
            return self.fallback()

        now = self._now()
        assignment = None
        source = SOURCE_FALLBACK
        if branch_id is not None:
            assignment = mapping.effective_assignment(branch_id, now)
            source = SOURCE_BRANCH
        if assignment is None:
            assignment = mapping.effective_assignment(mapping.default_branch_id, now)
            source = SOURCE_DEFAULT_BRANCH
        if assignment is None:
            remaining = sorted(mapping.effective_assignments(now), key=lambda a: a.branch_id)
            assignment = remaining[0] if remaining else None
            source = SOURCE_ANY_BRANCH
        if assignment is None:
            return self.fallback()

        permissions = self._permissions_for(assignment, strict)
        if permissions is None:
            return self.fallback()
        return ResolvedRole(role=assignment.role, permissions=permissions, branch_id=assignment.branch_id,
                            source=source)

    def _permissions_for(self, assignment: BranchRoleAssignment, strict: bool = False) -> Optional[FrozenSet[Permission]]:
        if assignment.has_custom_permissions:
            return frozenset(validate_permissions(assignment.permissions))
        try:
            return self.cache.get_or_load(assignment.role, self.catalog.role_permissions)
        except RoleNotFound:
            logger.warning('Assigned role %s no longer exists; using %s fallback', assignment.role, FALLBACK_ROLE)
        except RemoteUnavailable:
            if strict:
                raise
            logger.warning('Role catalog unavailable loading %s; using %s fallback', assignment.role, FALLBACK_ROLE)
        return None


# --- request-time checks against the caller's token claims ---

def current_permissions() -> Set[Permission]:
    claims = get_jwt()
    return expand_wildcard(validate_permissions(claims.get('permissions', [])))


def has_permissions(*codes: Any) -> bool:
    # an unknown code can never be satisfied
    if not all(is_valid_permission(c) for c in codes):
        return False
    perms = current_permissions()
    return all(p in perms for p in validate_permissions(codes))


def assert_branch_access(branch_id: Any):
    claims = get_jwt()
    if Permission.ALL in current_permissions():
        return
    allowed = claims.get('branch_ids')
    if not allowed:
        return  # No scoping
    if str(branch_id) not in {str(b) for b in allowed}:
        abort(403, description='Branch access denied')


__all__ = ['ResolvedRole', 'RoleResolver', 'current_permissions', 'has_permissions', 'assert_branch_access']
