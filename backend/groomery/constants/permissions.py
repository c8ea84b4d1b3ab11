"""Central enum-like definitions for permissions and the system role catalog.
Extend cautiously; never rename permission values silently. Add new members and retire old ones
through a migration of stored role documents.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Set
import logging

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    MANAGE_APPOINTMENTS = 'manage_appointments'
    VIEW_APPOINTMENTS = 'view_appointments'
    CREATE_APPOINTMENTS = 'create_appointments'
    CANCEL_APPOINTMENTS = 'cancel_appointments'
    MANAGE_CUSTOMERS = 'manage_customers'
    VIEW_CUSTOMERS = 'view_customers'
    CREATE_CUSTOMERS = 'create_customers'
    EDIT_CUSTOMER_INFO = 'edit_customer_info'
    MANAGE_SERVICES = 'manage_services'
    VIEW_SERVICES = 'view_services'
    CREATE_SERVICES = 'create_services'
    EDIT_SERVICES = 'edit_services'
    MANAGE_INVENTORY = 'manage_inventory'
    VIEW_INVENTORY = 'view_inventory'
    UPDATE_STOCK = 'update_stock'
    MANAGE_CONSUMABLES = 'manage_consumables'
    MANAGE_STAFF_SCHEDULE = 'manage_staff_schedule'
    VIEW_STAFF_SCHEDULE = 'view_staff_schedule'
    MANAGE_OWN_SCHEDULE = 'manage_own_schedule'
    VIEW_ANALYTICS = 'view_analytics'
    VIEW_REPORTS = 'view_reports'
    VIEW_FINANCIAL_REPORTS = 'view_financial_reports'
    ALL = 'all'

    def __str__(self) -> str:
        return self.value


WILDCARD = Permission.ALL
ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)
_BY_VALUE: Dict[str, Permission] = {p.value: p for p in Permission}


def is_valid_permission(token: Any) -> bool:
    if isinstance(token, Permission):
        return True
    return isinstance(token, str) and token in _BY_VALUE


def validate_permissions(tokens: Any) -> Set[Permission]:
    """Convert raw tokens to catalog permissions, dropping anything unknown.

    One malformed entry must not block a bulk role update, so invalid tokens are
    logged and filtered instead of raising.
    """
    if isinstance(tokens, (str, bytes)) or not isinstance(tokens, Iterable):
        logger.warning('Invalid permissions format: %r', tokens)
        return set()
    valid: Set[Permission] = set()
    for token in tokens:
        if isinstance(token, Permission):
            valid.add(token)
        elif is_valid_permission(token):
            valid.add(_BY_VALUE[token])
        else:
            logger.warning('Invalid permission filtered: %r', token)
    return valid


def permission_values(perms: Iterable[Permission]) -> List[str]:
    """Sorted wire form used in stored documents and claims."""
    return sorted(str(p) for p in perms)


def expand_wildcard(perms: Iterable[Permission]) -> Set[Permission]:
    perms = set(perms)
    if WILDCARD in perms:
        return set(ALL_PERMISSIONS)
    return perms


# --- System roles ---

ADMIN = 'admin'
MANAGER = 'manager'
STAFF = 'staff'
RECEPTIONIST = 'receptionist'
FALLBACK_ROLE = STAFF


@dataclass(frozen=True)
class RolePreset:
    name: str
    description: str
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    allow_multi_branch: bool = False
    branch_specific_permissions: bool = False


SYSTEM_ROLES: Dict[str, RolePreset] = {
    ADMIN: RolePreset(
        name=ADMIN,
        description='Full system access with user management capabilities',
        permissions=ALL_PERMISSIONS,
        allow_multi_branch=True,
    ),
    # Manager: branch operations and staff oversight, no user/role administration
    MANAGER: RolePreset(
        name=MANAGER,
        description='Branch management with staff oversight and reporting access',
        permissions=frozenset({
            Permission.VIEW_APPOINTMENTS, Permission.CREATE_APPOINTMENTS, Permission.CANCEL_APPOINTMENTS,
            Permission.VIEW_CUSTOMERS, Permission.CREATE_CUSTOMERS, Permission.EDIT_CUSTOMER_INFO,
            Permission.VIEW_SERVICES, Permission.VIEW_INVENTORY, Permission.UPDATE_STOCK,
            Permission.MANAGE_STAFF_SCHEDULE, Permission.VIEW_STAFF_SCHEDULE, Permission.MANAGE_OWN_SCHEDULE,
            Permission.VIEW_ANALYTICS,
        }),
        allow_multi_branch=True,
        branch_specific_permissions=True,
    ),
    STAFF: RolePreset(
        name=STAFF,
        description='Basic service provider access with appointment management',
        permissions=frozenset({
            Permission.VIEW_APPOINTMENTS, Permission.CREATE_APPOINTMENTS,
            Permission.VIEW_CUSTOMERS, Permission.CREATE_CUSTOMERS,
            Permission.VIEW_SERVICES, Permission.VIEW_INVENTORY,
            Permission.MANAGE_OWN_SCHEDULE,
        }),
        branch_specific_permissions=True,
    ),
    RECEPTIONIST: RolePreset(
        name=RECEPTIONIST,
        description='Front desk operations with customer and appointment handling',
        permissions=frozenset({
            Permission.VIEW_APPOINTMENTS, Permission.CREATE_APPOINTMENTS,
            Permission.VIEW_CUSTOMERS, Permission.CREATE_CUSTOMERS,
            Permission.VIEW_SERVICES,
        }),
        branch_specific_permissions=True,
    ),
}


def default_permissions(role_name: str) -> FrozenSet[Permission]:
    return SYSTEM_ROLES[role_name].permissions


__all__ = [
    'Permission', 'WILDCARD', 'ALL_PERMISSIONS', 'is_valid_permission', 'validate_permissions',
    'permission_values', 'expand_wildcard', 'ADMIN', 'MANAGER', 'STAFF', 'RECEPTIONIST',
    'FALLBACK_ROLE', 'RolePreset', 'SYSTEM_ROLES', 'default_permissions',
]
