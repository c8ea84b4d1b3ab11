"""Process-start seeding of the role catalog and the initial administrator.

Seeding is an explicit, idempotent operation: ``ensure_system_roles_exist`` reads before it
writes, so running bootstrap on every start (or from the CLI) is safe.
"""
from __future__ import annotations
from typing import Callable, Optional, TypeVar
import logging
import time

from groomery.constants.permissions import ADMIN, ALL_PERMISSIONS, WILDCARD
from groomery.errors import AdministratorEmailRejected, BootstrapFailed, RemoteUnavailable
from groomery.models.store import utcnow
from groomery.services.identity import UserRecord
from groomery.services.mappings import BranchRoleAssignment
from groomery.services.policy import ResolvedRole, SOURCE_BRANCH

logger = logging.getLogger(__name__)

T = TypeVar('T')


def with_retries(fn: Callable[[], T], attempts: int, delay: float,
                 sleep: Callable[[float], None] = time.sleep) -> T:
    """Call ``fn`` up to ``attempts`` times, sleeping ``delay`` seconds between failures.

    Only ``RemoteUnavailable`` is retried; the last one is re-raised once attempts run out.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except RemoteUnavailable as e:
            if attempt == attempts:
                raise
            logger.warning('Attempt %d/%d failed: %s; retrying in %.1fs', attempt, attempts, e, delay)
            if delay > 0:
                sleep(delay)
    raise AssertionError('unreachable')


def check_admin_email(email: str, domain: str, is_development: bool) -> str:
    email = (email or '').strip().lower()
    if '@' not in email:
        raise AdministratorEmailRejected(f"'{email}' is not an email address")
    if is_development:
        return email
    if not email.endswith('@' + domain.lower()):
        raise AdministratorEmailRejected(f"Administrator email must belong to {domain}", email=email)
    return email


def setup_administrator(services, email: str, password: Optional[str] = None) -> UserRecord:
    """Grant ``email`` the admin role at the default branch and push admin claims.

    The identity is created when it does not exist yet. Existing tokens are revoked so the new
    claims take effect on the next sign-in.
    """
    email = check_admin_email(email, services.admin_email_domain, services.is_development)
    user, created = services.identity.get_or_create_user(email, password=password)
    if created:
        logger.info('Created administrator identity %s', email)

    now = utcnow()
    permissions = frozenset(ALL_PERMISSIONS | {WILDCARD})
    mapping = services.mappings.get_or_empty(user.uid)
    branch_id = mapping.default_branch_id or services.default_branch_id
    previous = mapping.deactivate_branch(branch_id)
    prior = previous[-1] if previous else None
    mapping.roles.append(BranchRoleAssignment(
        branch_id=branch_id,
        role=ADMIN,
        permissions=permissions,
        is_active=True,
        start_date=now,
    ))
    mapping.default_branch_id = branch_id
    mapping.is_multi_branch_enabled = True
    mapping.updated_at = now
    services.mappings.save(mapping)

    resolved = ResolvedRole(role=ADMIN, permissions=permissions, branch_id=branch_id, source=SOURCE_BRANCH)
    services.identity.set_claims(user.uid, resolved.to_claims(now))
    services.identity.revoke_credentials(user.uid)
    services.history.record_assignment(
        user.uid,
        action='setup_administrator',
        new_role=ADMIN,
        new_permissions=permissions,
        previous_role=prior.role if prior else None,
        previous_permissions=prior.permissions if prior else (),
        branch_id=branch_id,
        entry_type='initial_setup',
    )
    logger.info('Administrator %s set up at branch %s', email, branch_id)
    return services.identity.get_user(user.uid)


def bootstrap(app, sleep: Callable[[float], None] = time.sleep):
    """Seed system roles with bounded retries, then set up ADMIN_EMAIL when configured.

    In production an exhausted retry budget raises BootstrapFailed and the app does not start.
    In development the catalog switches to its in-memory defaults instead.
    """
    from groomery.services.registry import get_services
    services = get_services(app)
    cfg = app.config
    try:
        outcome = with_retries(
            services.catalog.ensure_system_roles_exist,
            cfg['BOOTSTRAP_MAX_ATTEMPTS'],
            cfg['BOOTSTRAP_RETRY_DELAY'],
            sleep=sleep,
        )
    except RemoteUnavailable as e:
        if not services.is_development:
            raise BootstrapFailed(f'System role seeding failed: {e.detail}') from e
        services.catalog.use_defaults(f'seeding failed ({e.detail})')
        return None
    app.logger.info('System roles: %s', ', '.join(f'{k}={v}' for k, v in sorted(outcome.items())))

    admin_email = cfg.get('ADMIN_EMAIL')
    if admin_email:
        try:
            with_retries(lambda: setup_administrator(services, admin_email), cfg['BOOTSTRAP_MAX_ATTEMPTS'],
                         cfg['BOOTSTRAP_RETRY_DELAY'], sleep=sleep)
        except RemoteUnavailable as e:
            if not services.is_development:
                raise BootstrapFailed(f'Administrator setup failed: {e.detail}') from e
            app.logger.warning('Administrator setup skipped: %s', e.detail)
    return outcome


__all__ = ['bootstrap', 'setup_administrator', 'check_admin_email', 'with_retries']
