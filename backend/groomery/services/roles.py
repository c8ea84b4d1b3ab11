from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional
import logging

from groomery.constants.permissions import (
    Permission, SYSTEM_ROLES, RolePreset, permission_values, validate_permissions,
)
from groomery.errors import RoleExists, RoleNotFound, SystemRoleImmutable
from groomery.models.store import utcnow
from groomery.services.audit import RoleHistoryLog
from groomery.services.store import DocumentStore

logger = logging.getLogger(__name__)

ROLE_COLLECTION = 'role-definitions'


@dataclass(frozen=True)
class Role:
    name: str
    description: str = ''
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    is_system: bool = False
    allow_multi_branch: bool = False
    branch_specific_permissions: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_preset(cls, preset: RolePreset) -> 'Role':
        return cls(
            name=preset.name,
            description=preset.description,
            permissions=preset.permissions,
            is_system=True,
            allow_multi_branch=preset.allow_multi_branch,
            branch_specific_permissions=preset.branch_specific_permissions,
        )

    @classmethod
    def from_document(cls, name: str, doc: Dict[str, Any]) -> 'Role':
        # stored values cross the trust boundary here; unknown permissions are dropped
        return cls(
            name=doc.get('name') or name,
            description=doc.get('description') or '',
            permissions=frozenset(validate_permissions(doc.get('permissions') or [])),
            is_system=bool(doc.get('is_system', False)),
            allow_multi_branch=bool(doc.get('allow_multi_branch', False)),
            branch_specific_permissions=bool(doc.get('branch_specific_permissions', False)),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'permissions': permission_values(self.permissions),
            'is_system': self.is_system,
            'allow_multi_branch': self.allow_multi_branch,
            'branch_specific_permissions': self.branch_specific_permissions,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.to_document()


def _role_path(name: str) -> str:
    return f"{ROLE_COLLECTION}/{name}"


def _validate_role_name(name: str) -> str:
    name = (name or '').strip()
    if not name or '/' in name or len(name) > 64:
        raise ValueError('role name must be 1-64 characters without "/"')
    return name


class RoleCatalog:
    """Role definitions persisted at ``role-definitions/{name}``.

    ``using_defaults`` is switched on when bootstrap could not reach the store in development; the
    catalog then serves the built-in system roles from memory.
    """

    def __init__(self, store: DocumentStore, history: RoleHistoryLog):
        self.store = store
        self.history = history
        self.using_defaults = False

    def use_defaults(self, reason: str):
        logger.warning('Role catalog serving in-memory defaults: %s', reason)
        self.using_defaults = True

    # --- reads ---
    def get_role(self, name: str) -> Role:
        if self.using_defaults:
            preset = SYSTEM_ROLES.get(name)
            if preset is None:
                raise RoleNotFound(name)
            return Role.from_preset(preset)
        doc = self.store.get(_role_path(name))
        if doc is None:
            raise RoleNotFound(name)
        return Role.from_document(name, doc)

    def role_exists(self, name: str) -> bool:
        try:
            self.get_role(name)
        except RoleNotFound:
            return False
        return True

    def role_permissions(self, name: str) -> FrozenSet[Permission]:
        return self.get_role(name).permissions

    def get_role_definitions(self) -> Dict[str, Role]:
        roles = {name: Role.from_preset(p) for name, p in SYSTEM_ROLES.items()}
        if self.using_defaults:
            return roles
        for name, doc in self.store.list(ROLE_COLLECTION).items():
            roles[name] = Role.from_document(name, doc)
        return dict(sorted(roles.items()))

    # --- seeding ---
    def ensure_system_roles_exist(self) -> Dict[str, str]:
        """Read-or-create every system role; returns ``{role: created|updated|unchanged|skipped}``.

        Existing system records are healed back to the catalog defaults while keeping
        ``created_at`` and any stored description. Nothing is written when a record already
        matches, so running this twice leaves the catalog identical.
        """
        outcome: Dict[str, str] = {}
        for name, preset in SYSTEM_ROLES.items():
            path = _role_path(name)
            doc = self.store.get(path)
            now = utcnow().isoformat()
            if doc is None:
                role = Role.from_preset(preset)
                self.store.set(path, {**role.to_document(), 'created_at': now, 'updated_at': now})
                outcome[name] = 'created'
                logger.info('Created system role %s', name)
                continue
            if not doc.get('is_system'):
                logger.warning('Role %s exists but is not marked as system; leaving it untouched', name)
                outcome[name] = 'skipped'
                continue
            desired = Role.from_preset(preset)
            current = Role.from_document(name, doc)
            if (
                doc.get('permissions') == permission_values(desired.permissions)
                and current.allow_multi_branch == desired.allow_multi_branch
                and current.branch_specific_permissions == desired.branch_specific_permissions
            ):
                outcome[name] = 'unchanged'
                continue
            healed = Role(
                name=name,
                description=current.description or desired.description,
                permissions=desired.permissions,
                is_system=True,
                allow_multi_branch=desired.allow_multi_branch,
                branch_specific_permissions=desired.branch_specific_permissions,
                created_at=current.created_at or now,
                updated_at=now,
            )
            self.store.set(path, healed.to_document())
            outcome[name] = 'updated'
            logger.info('Reset system role %s to catalog defaults', name)
        self.using_defaults = False
        return outcome

    # --- custom roles ---
    def create_role(
        self,
        name: str,
        permissions: Iterable[Any],
        description: str = '',
        allow_multi_branch: bool = False,
        branch_specific_permissions: bool = False,
        actor: Optional[str] = None,
    ) -> Role:
        name = _validate_role_name(name)
        if name in SYSTEM_ROLES or self.store.get(_role_path(name)) is not None:
            raise RoleExists(name)
        now = utcnow().isoformat()
        role = Role(
            name=name,
            description=description or '',
            permissions=frozenset(validate_permissions(permissions)),
            is_system=False,
            allow_multi_branch=allow_multi_branch,
            branch_specific_permissions=branch_specific_permissions,
            created_at=now,
            updated_at=now,
        )
        self.store.set(_role_path(name), role.to_document())
        self.history.record_definition_change(
            name, (), role.permissions, entry_type='create', new_description=role.description, actor=actor,
        )
        return role

    def update_role_definition(
        self,
        role_name: str,
        permissions: Iterable[Any],
        description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Role:
        if role_name in SYSTEM_ROLES:
            raise SystemRoleImmutable(role_name)
        path = _role_path(role_name)
        doc = self.store.get(path)
        if doc is None:
            raise RoleNotFound(role_name)
        current = Role.from_document(role_name, doc)
        if current.is_system:
            raise SystemRoleImmutable(role_name)
        updated = Role(
            name=current.name,
            description=current.description if description is None else description,
            permissions=frozenset(validate_permissions(permissions)),
            is_system=False,
            allow_multi_branch=current.allow_multi_branch,
            branch_specific_permissions=current.branch_specific_permissions,
            created_at=current.created_at,
            updated_at=utcnow().isoformat(),
        )
        self.store.set(path, updated.to_document())
        self.history.record_definition_change(
            role_name,
            current.permissions,
            updated.permissions,
            previous_description=current.description,
            new_description=updated.description,
            actor=actor,
        )
        logger.info('Updated role %s (%d permissions)', role_name, len(updated.permissions))
        return updated


__all__ = ['Role', 'RoleCatalog', 'ROLE_COLLECTION']
