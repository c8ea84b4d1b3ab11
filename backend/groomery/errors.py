"""Error taxonomy for the authorization core.

Every error carries an HTTP status so the app-level error handler can render the
standard ``{'error': {...}}`` payload without a lookup table.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class AuthzError(Exception):
    status = 500
    title = 'Authorization Error'

    def __init__(self, detail: Optional[str] = None, **meta: Any):
        super().__init__(detail or self.title)
        self.detail = detail or self.title
        self.meta: Dict[str, Any] = meta

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            'status': self.status,
            'title': self.title,
            'detail': self.detail,
        }
        if self.meta:
            payload['meta'] = self.meta
        return {'error': payload}


class InvalidPermission(AuthzError):
    status = 400
    title = 'Invalid Permission'


class RoleNotFound(AuthzError):
    status = 404
    title = 'Role Not Found'

    def __init__(self, role: str):
        super().__init__(f"Role '{role}' not found", role=role)
        self.role = role


class RoleExists(AuthzError):
    status = 409
    title = 'Role Exists'

    def __init__(self, role: str):
        super().__init__(f"Role '{role}' already exists", role=role)
        self.role = role


class UserNotFound(AuthzError):
    status = 404
    title = 'User Not Found'

    def __init__(self, user_id: str):
        super().__init__(f"User '{user_id}' not found", user_id=user_id)
        self.user_id = user_id


class SystemRoleImmutable(AuthzError):
    status = 409
    title = 'System Role Immutable'

    def __init__(self, role: str):
        super().__init__(f"System role '{role}' cannot be modified", role=role)
        self.role = role


class AdministratorEmailRejected(AuthzError):
    status = 400
    title = 'Administrator Email Rejected'


class CredentialsMissing(AuthzError):
    status = 500
    title = 'Credentials Missing'


class SyncDrift(AuthzError):
    """Divergence between identity claims and the stored role record.

    Returned as a value by the synchronizer's drift detection; raised only by
    callers that want a hard failure on drift.
    """
    status = 409
    title = 'Sync Drift'

    def __init__(self, user_id: str, claims: Optional[Dict[str, Any]], expected: Dict[str, Any]):
        super().__init__(f"Claims for user '{user_id}' diverge from stored role", user_id=user_id)
        self.user_id = user_id
        self.claims = claims
        self.expected = expected


class RemoteUnavailable(AuthzError):
    status = 503
    title = 'Service Unavailable'


class BootstrapFailed(AuthzError):
    status = 500
    title = 'Bootstrap Failed'


__all__ = [
    'AuthzError', 'InvalidPermission', 'RoleNotFound', 'RoleExists', 'UserNotFound',
    'SystemRoleImmutable', 'AdministratorEmailRejected', 'CredentialsMissing', 'SyncDrift',
    'RemoteUnavailable', 'BootstrapFailed',
]
