"""Test seeding utilities to reduce duplication.

These helpers centralize creation of identities, branch assignments and logged-in clients.
"""
from datetime import datetime
from typing import Iterable, Optional

from groomery.errors import UserNotFound
from groomery.services.mappings import BranchRoleAssignment, UserRoleMapping
from groomery.constants.permissions import validate_permissions

ADMIN_EMAIL = 'owner@groomery.in'


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, t: float = 1000.0):
        self.t = t

    def advance(self, seconds: float):
        self.t += seconds

    def __call__(self) -> float:
        return self.t


def ensure_identity(services, email: str, password: str = 'pw', uid: Optional[str] = None):
    try:
        return services.identity.get_user_by_email(email)
    except UserNotFound:
        return services.identity.create_user(email, password=password, uid=uid)


def save_mapping(services, user_id: str, assignments: Iterable[BranchRoleAssignment],
                 default_branch_id: Optional[str] = None, multi_branch: bool = False) -> UserRoleMapping:
    """Write a mapping directly, bypassing the assignment service (no claims, no history)."""
    mapping = UserRoleMapping(
        user_id=user_id,
        roles=list(assignments),
        default_branch_id=default_branch_id,
        is_multi_branch_enabled=multi_branch,
    )
    services.mappings.save(mapping)
    return mapping


def assignment(branch_id: str, role: str, permissions: Iterable[str] = (), is_active: bool = True,
               start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
               custom: bool = False) -> BranchRoleAssignment:
    return BranchRoleAssignment(
        branch_id=branch_id,
        role=role,
        permissions=frozenset(validate_permissions(list(permissions))),
        is_active=is_active,
        start_date=start_date,
        end_date=end_date,
        has_custom_permissions=custom,
    )


def login(client, email: str, password: str = 'pw') -> str:
    resp = client.post('/iam/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()['access_token']


def auth_headers(client, email: str, password: str = 'pw'):
    return {'Authorization': f'Bearer {login(client, email, password)}'}


def admin_headers(client, services, email: str = ADMIN_EMAIL):
    services.setup_administrator(email, password='pw')
    return auth_headers(client, email)


__all__ = ['FakeClock', 'ensure_identity', 'save_mapping', 'assignment', 'login', 'auth_headers', 'admin_headers', 'ADMIN_EMAIL']
