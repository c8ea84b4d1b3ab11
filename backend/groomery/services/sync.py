from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from groomery.errors import AuthzError, SyncDrift
from groomery.services.identity import IdentityProvider
from groomery.services.policy import ResolvedRole, RoleResolver

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    checked: int = 0
    repaired: int = 0
    failed: int = 0
    failed_users: List[str] = field(default_factory=list)
    next_page_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'checked': self.checked,
            'repaired': self.repaired,
            'failed': self.failed,
            'failed_users': list(self.failed_users),
            'next_page_token': self.next_page_token,
        }


class ClaimsSynchronizer:
    """Repairs drift between identity claims and the stored role record.

    The store is the system of record: when the two disagree the claims are overwritten. Each
    per-user sync is idempotent, so ``sync_all`` can be stopped and restarted from any page token.
    """

    def __init__(self, identity: IdentityProvider, resolver: RoleResolver, page_size: int = 100):
        self.identity = identity
        self.resolver = resolver
        self.page_size = page_size

    def _compare(self, user_id: str) -> Tuple[Optional[SyncDrift], ResolvedRole]:
        user = self.identity.get_user(user_id)
        # store outages propagate; claims are only ever rewritten from a record the store produced
        expected = self.resolver.resolve_stored(user_id)
        if expected.matches_claims(user.custom_claims):
            return None, expected
        return SyncDrift(user_id, user.custom_claims, expected.to_dict()), expected

    def detect_drift(self, user_id: str) -> Optional[SyncDrift]:
        drift, _ = self._compare(user_id)
        return drift

    def sync_one(self, user_id: str) -> bool:
        """Returns True when the claims were rewritten, False when already consistent."""
        drift, expected = self._compare(user_id)
        if drift is None:
            return False
        self.identity.set_claims(user_id, expected.to_claims())
        self.identity.revoke_credentials(user_id)
        logger.info('Repaired claims drift for %s (role %s)', user_id, expected.role)
        return True

    def sync_all(self, page_size: Optional[int] = None, page_token: Optional[str] = None,
                 max_pages: Optional[int] = None) -> SyncReport:
        """Walk every identity page by page. ``max_pages`` stops early and reports the resume token."""
        report = SyncReport()
        size = page_size or self.page_size
        token = page_token
        pages = 0
        while True:
            page = self.identity.list_users(size, token)
            for user in page.users:
                report.checked += 1
                try:
                    if self.sync_one(user.uid):
                        report.repaired += 1
                except AuthzError as e:
                    report.failed += 1
                    report.failed_users.append(user.uid)
                    logger.warning('Claims sync failed for %s: %s', user.uid, e)
            pages += 1
            token = page.page_token
            if token is None:
                break
            if max_pages is not None and pages >= max_pages:
                report.next_page_token = token
                break
        logger.info('Claims sync checked %d users, repaired %d, failed %d',
                    report.checked, report.repaired, report.failed)
        return report


__all__ = ['ClaimsSynchronizer', 'SyncReport']
