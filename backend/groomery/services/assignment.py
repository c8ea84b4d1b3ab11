"""Role assignment: the only writer of ``user-roles/{userId}``.

The store write is the durability point. The claims update that follows is best effort: a
failure there is logged and left for the synchronizer, never rolled back into the store.

Callers serialise assignments per user. The per-user lock below covers a single process only;
concurrent writers in separate processes can still lose an update on the same mapping document.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging
import threading

from groomery.constants.permissions import ADMIN, WILDCARD, validate_permissions
from groomery.errors import RemoteUnavailable
from groomery.models.store import utcnow
from groomery.services.audit import RoleHistoryLog
from groomery.services.identity import IdentityProvider, UserRecord
from groomery.services.mappings import (
    BranchRoleAssignment, UserRoleMapping, UserRoleMappingStore, format_timestamp, parse_timestamp,
)
from groomery.services.policy import SOURCE_BRANCH, ResolvedRole, RoleResolver
from groomery.services.roles import RoleCatalog

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


@dataclass
class UserWithRole:
    uid: str
    email: str
    display_name: Optional[str]
    role: str
    permissions: List[str]
    branch_id: Optional[str]
    disabled: bool
    last_sign_in_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def build(cls, user: UserRecord, resolved: ResolvedRole) -> 'UserWithRole':
        return cls(
            uid=user.uid,
            email=user.email,
            display_name=user.display_name or user.email.split('@')[0],
            role=resolved.role,
            permissions=resolved.to_dict()['permissions'],
            branch_id=resolved.branch_id,
            disabled=user.disabled,
            last_sign_in_at=format_timestamp(user.last_sign_in_at),
            created_at=format_timestamp(user.created_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class UsersPage:
    users: List[UserWithRole] = field(default_factory=list)
    page_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'users': [u.to_dict() for u in self.users],
            'page_token': self.page_token,
            'has_next_page': self.page_token is not None,
        }


class RoleAssignmentService:

    def __init__(
        self,
        catalog: RoleCatalog,
        identity: IdentityProvider,
        mappings: UserRoleMappingStore,
        history: RoleHistoryLog,
        resolver: RoleResolver,
        default_branch_id: str = 'main',
        now: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.identity = identity
        self.mappings = mappings
        self.history = history
        self.resolver = resolver
        self.default_branch_id = default_branch_id
        self._now = now
        # fixed stripe; users sharing a stripe just serialise with each other
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _user_lock(self, user_id: str) -> threading.Lock:
        return self._locks[hash(user_id) % len(self._locks)]

    def assign_role(
        self,
        user_id: str,
        role: str,
        branch_id: Optional[str] = None,
        custom_permissions: Optional[Iterable[Any]] = None,
        is_multi_branch_enabled: Optional[bool] = None,
        start_date: Any = None,
        end_date: Any = None,
        actor: Optional[str] = None,
    ) -> ResolvedRole:
        """Make ``role`` the active assignment for ``user_id`` at ``branch_id``.

        Any previously active assignment for the same branch is deactivated (never deleted), a
        history entry is pushed, and the user's claims are refreshed from the active view.
        Re-running with the same arguments leaves exactly one active assignment for the branch.

        Raises RoleNotFound, UserNotFound, ValueError (bad validity window) or RemoteUnavailable
        when the store write itself fails.
        """
        role_def = self.catalog.get_role(role)
        self.identity.get_user(user_id)

        custom_permissions = list(custom_permissions or [])
        custom = len(custom_permissions) > 0
        if custom:
            permissions = frozenset(validate_permissions(custom_permissions))
        else:
            permissions = role_def.permissions
        if role == ADMIN:
            permissions = permissions | {WILDCARD}

        now = self._now()
        start = parse_timestamp(start_date) or now
        end = parse_timestamp(end_date)
        if end is not None and end <= start:
            raise ValueError('end_date must be after start_date')

        with self._user_lock(user_id):
            mapping = self.mappings.get_or_empty(user_id)
            target_branch = str(branch_id) if branch_id else (mapping.default_branch_id or self.default_branch_id)
            previous = mapping.deactivate_branch(target_branch)
            prior = previous[-1] if previous else None
            mapping.roles.append(BranchRoleAssignment(
                branch_id=target_branch,
                role=role,
                permissions=frozenset(permissions),
                is_active=True,
                start_date=start,
                end_date=end,
                has_custom_permissions=custom,
                assigned_by=actor,
            ))
            if mapping.default_branch_id is None:
                mapping.default_branch_id = target_branch
            if is_multi_branch_enabled is not None:
                if is_multi_branch_enabled and not role_def.allow_multi_branch:
                    logger.warning('Role %s does not allow multi-branch access; flag left off for %s', role, user_id)
                mapping.is_multi_branch_enabled = bool(is_multi_branch_enabled and role_def.allow_multi_branch)
            mapping.updated_at = now
            self.mappings.save(mapping)

            self.history.record_assignment(
                user_id,
                action='assign_role',
                new_role=role,
                new_permissions=permissions,
                previous_role=prior.role if prior else None,
                previous_permissions=prior.permissions if prior else (),
                branch_id=target_branch,
                actor=actor,
                meta={'custom_permissions': custom},
            )
            self.refresh_claims(user_id, mapping)

        logger.info('Assigned role %s to %s at branch %s', role, user_id, target_branch)
        return ResolvedRole(role=role, permissions=frozenset(permissions), branch_id=target_branch,
                            source=SOURCE_BRANCH)

    def refresh_claims(self, user_id: str, mapping: UserRoleMapping) -> bool:
        """Mirror the active view into the identity provider; False when the write failed."""
        try:
            resolved = self.resolver.resolve_mapping(mapping, strict=True)
            self.identity.set_claims(user_id, resolved.to_claims(self._now()))
            self.identity.revoke_credentials(user_id)
        except RemoteUnavailable as e:
            logger.warning('Claims update for %s failed after store write; pending sync: %s', user_id, e)
            return False
        return True

    def get_mapping(self, user_id: str) -> Optional[UserRoleMapping]:
        return self.mappings.get(user_id)

    def list_users_with_roles(self, page_size: int, page_token: Optional[str] = None) -> UsersPage:
        page = self.identity.list_users(page_size, page_token)
        users = [UserWithRole.build(u, self.resolver.resolve(u.uid)) for u in page.users]
        return UsersPage(users=users, page_token=page.page_token)


__all__ = ['RoleAssignmentService', 'UserWithRole', 'UsersPage']
