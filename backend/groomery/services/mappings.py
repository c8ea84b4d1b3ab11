from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional
import logging

from groomery.constants.permissions import Permission, permission_values, validate_permissions
from groomery.services.store import DocumentStore

logger = logging.getLogger(__name__)

MAPPING_COLLECTION = 'user-roles'


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass(frozen=True)
class BranchRoleAssignment:
    branch_id: str
    role: str
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    # False: permissions are a snapshot of the role defaults and the role's current set applies
    has_custom_permissions: bool = False
    assigned_by: Optional[str] = None

    def is_effective(self, now: datetime) -> bool:
        """Active and inside its validity window."""
        if not self.is_active:
            return False
        if self.start_date is not None and self.start_date > now:
            return False
        if self.end_date is not None and self.end_date <= now:
            return False
        return True

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'BranchRoleAssignment':
        return cls(
            branch_id=str(doc['branch_id']),
            role=str(doc['role']),
            permissions=frozenset(validate_permissions(doc.get('permissions') or [])),
            is_active=bool(doc.get('is_active', False)),
            start_date=parse_timestamp(doc.get('start_date')),
            end_date=parse_timestamp(doc.get('end_date')),
            has_custom_permissions=bool(doc.get('has_custom_permissions', False)),
            assigned_by=doc.get('assigned_by'),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'branch_id': self.branch_id,
            'role': self.role,
            'permissions': permission_values(self.permissions),
            'is_active': self.is_active,
            'start_date': format_timestamp(self.start_date),
            'end_date': format_timestamp(self.end_date),
            'has_custom_permissions': self.has_custom_permissions,
            'assigned_by': self.assigned_by,
        }


@dataclass
class UserRoleMapping:
    user_id: str
    roles: List[BranchRoleAssignment] = field(default_factory=list)
    default_branch_id: Optional[str] = None
    is_multi_branch_enabled: bool = False
    updated_at: Optional[datetime] = None

    def effective_assignment(self, branch_id: Optional[str], now: datetime) -> Optional[BranchRoleAssignment]:
        if branch_id is None:
            return None
        # latest entry wins if a lost update ever left two active rows for a branch
        for assignment in reversed(self.roles):
            if assignment.branch_id == branch_id and assignment.is_effective(now):
                return assignment
        return None

    def effective_assignments(self, now: datetime) -> List[BranchRoleAssignment]:
        return [a for a in self.roles if a.is_effective(now)]

    def active_assignment(self, branch_id: str) -> Optional[BranchRoleAssignment]:
        """Latest ``is_active`` entry for a branch, ignoring the validity window."""
        for assignment in reversed(self.roles):
            if assignment.branch_id == branch_id and assignment.is_active:
                return assignment
        return None

    def deactivate_branch(self, branch_id: str) -> List[BranchRoleAssignment]:
        """Flip every active entry for ``branch_id`` to inactive; returns the entries as they were."""
        previous: List[BranchRoleAssignment] = []
        for idx, assignment in enumerate(self.roles):
            if assignment.branch_id == branch_id and assignment.is_active:
                previous.append(assignment)
                self.roles[idx] = replace(assignment, is_active=False)
        return previous

    @classmethod
    def empty(cls, user_id: str) -> 'UserRoleMapping':
        return cls(user_id=user_id)

    @classmethod
    def from_document(cls, user_id: str, doc: Dict[str, Any]) -> 'UserRoleMapping':
        roles = []
        for raw in doc.get('roles') or []:
            try:
                roles.append(BranchRoleAssignment.from_document(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning('Skipping malformed role assignment for %s: %r (%s)', user_id, raw, e)
        try:
            updated_at = parse_timestamp(doc.get('updated_at'))
        except (TypeError, ValueError):
            updated_at = None
        return cls(
            user_id=doc.get('user_id') or user_id,
            roles=roles,
            default_branch_id=doc.get('default_branch_id'),
            is_multi_branch_enabled=bool(doc.get('is_multi_branch_enabled', False)),
            updated_at=updated_at,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'roles': [r.to_document() for r in self.roles],
            'default_branch_id': self.default_branch_id,
            'is_multi_branch_enabled': self.is_multi_branch_enabled,
            'updated_at': format_timestamp(self.updated_at),
        }


class UserRoleMappingStore:
    """Reads and writes ``user-roles/{userId}``. Mappings are never deleted."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, user_id: str) -> Optional[UserRoleMapping]:
        doc = self.store.get(f"{MAPPING_COLLECTION}/{user_id}")
        if doc is None:
            return None
        return UserRoleMapping.from_document(user_id, doc)

    def get_or_empty(self, user_id: str) -> UserRoleMapping:
        return self.get(user_id) or UserRoleMapping.empty(user_id)

    def save(self, mapping: UserRoleMapping) -> None:
        self.store.set(f"{MAPPING_COLLECTION}/{mapping.user_id}", mapping.to_document())

    def all(self) -> Dict[str, UserRoleMapping]:
        return {
            uid: UserRoleMapping.from_document(uid, doc)
            for uid, doc in self.store.list(MAPPING_COLLECTION).items()
        }


__all__ = [
    'BranchRoleAssignment', 'UserRoleMapping', 'UserRoleMappingStore', 'MAPPING_COLLECTION',
    'parse_timestamp', 'format_timestamp',
]
