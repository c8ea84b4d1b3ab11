from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from flask import current_app

from groomery.services.assignment import RoleAssignmentService
from groomery.services.audit import RoleHistoryLog
from groomery.services.bootstrap import setup_administrator
from groomery.services.cache import PermissionCache
from groomery.services.identity import IdentityProvider
from groomery.services.mappings import UserRoleMappingStore
from groomery.services.policy import RoleResolver
from groomery.services.roles import RoleCatalog
from groomery.services.store import DocumentStore
from groomery.services.sync import ClaimsSynchronizer


@dataclass
class AuthzServices:
    """Everything the authorization core needs, wired once per app."""
    store: DocumentStore
    identity: IdentityProvider
    history: RoleHistoryLog
    catalog: RoleCatalog
    cache: PermissionCache
    mappings: UserRoleMappingStore
    resolver: RoleResolver
    assignments: RoleAssignmentService
    sync: ClaimsSynchronizer
    default_branch_id: str = 'main'
    admin_email_domain: str = 'groomery.in'
    is_development: bool = False

    def setup_administrator(self, email: str, password: Optional[str] = None):
        return setup_administrator(self, email, password=password)


def build_services(config: Mapping[str, Any]) -> AuthzServices:
    store = DocumentStore()
    identity = IdentityProvider()
    history = RoleHistoryLog(store)
    catalog = RoleCatalog(store, history)
    cache = PermissionCache(ttl_seconds=float(config.get('PERMISSION_CACHE_TTL', 300)))
    mappings = UserRoleMappingStore(store)
    resolver = RoleResolver(catalog, mappings, cache)
    default_branch_id = str(config.get('DEFAULT_BRANCH_ID') or 'main')
    assignments = RoleAssignmentService(
        catalog, identity, mappings, history, resolver, default_branch_id=default_branch_id,
    )
    sync = ClaimsSynchronizer(identity, resolver, page_size=int(config.get('USERS_PAGE_SIZE', 100)))
    return AuthzServices(
        store=store,
        identity=identity,
        history=history,
        catalog=catalog,
        cache=cache,
        mappings=mappings,
        resolver=resolver,
        assignments=assignments,
        sync=sync,
        default_branch_id=default_branch_id,
        admin_email_domain=str(config.get('ADMIN_EMAIL_DOMAIN') or 'groomery.in'),
        is_development=bool(config.get('IS_DEVELOPMENT', False)),
    )


def get_services(app: Optional[Any] = None) -> AuthzServices:
    app = app or current_app
    return app.extensions['authz']


__all__ = ['AuthzServices', 'build_services', 'get_services']
