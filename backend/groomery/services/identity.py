"""Identity provider facade.

Owns login identities and the small claims payload attached to each credential. Tokens are
issued by flask-jwt-extended with the claims copied in, so revoking a user moves
``tokens_valid_after`` forward and the JWT blocklist loader rejects older tokens.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import copy
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from groomery import get_db
from groomery.errors import RemoteUnavailable, UserNotFound
from groomery.models.identity import Identity
from groomery.models.store import utcnow

logger = logging.getLogger(__name__)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class UserRecord:
    uid: str
    email: str
    display_name: Optional[str] = None
    disabled: bool = False
    custom_claims: Optional[Dict[str, Any]] = None
    tokens_valid_after: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Identity) -> 'UserRecord':
        return cls(
            uid=row.uid,
            email=row.email,
            display_name=row.display_name,
            disabled=bool(row.disabled),
            custom_claims=copy.deepcopy(row.custom_claims) if row.custom_claims is not None else None,
            tokens_valid_after=_aware(row.tokens_valid_after),
            created_at=_aware(row.created_at),
            last_sign_in_at=_aware(row.last_sign_in_at),
        )


@dataclass
class UserPage:
    users: List[UserRecord] = field(default_factory=list)
    page_token: Optional[str] = None


class IdentityProvider:

    def _run(self, fn, write: bool = False):
        session = get_db()
        try:
            result = fn(session)
            if write:
                session.commit()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            logger.error('Identity provider call failed: %s', e)
            raise RemoteUnavailable('Identity provider unavailable') from e
        except Exception:
            session.rollback()
            raise

    @staticmethod
    def _require(session, uid: str) -> Identity:
        row = session.get(Identity, uid)
        if row is None:
            raise UserNotFound(uid)
        return row

    def get_user(self, uid: str) -> UserRecord:
        return self._run(lambda s: UserRecord.from_row(self._require(s, uid)))

    def get_user_by_email(self, email: str) -> UserRecord:
        def op(session):
            row = session.execute(select(Identity).where(Identity.email == email.lower())).scalar_one_or_none()
            if row is None:
                raise UserNotFound(email)
            return UserRecord.from_row(row)
        return self._run(op)

    def create_user(self, email: str, password: Optional[str] = None, display_name: Optional[str] = None,
                    uid: Optional[str] = None) -> UserRecord:
        email = email.strip().lower()

        def op(session):
            row = Identity(
                uid=uid or uuid.uuid4().hex[:28],
                email=email,
                display_name=display_name or email.split('@')[0],
            )
            if password:
                row.set_password(password)
            session.add(row)
            session.flush()
            return UserRecord.from_row(row)
        return self._run(op, write=True)

    def get_or_create_user(self, email: str, password: Optional[str] = None,
                           display_name: Optional[str] = None) -> Tuple[UserRecord, bool]:
        try:
            return self.get_user_by_email(email), False
        except UserNotFound:
            return self.create_user(email, password=password, display_name=display_name), True

    def set_claims(self, uid: str, payload: Optional[Dict[str, Any]]) -> None:
        def op(session):
            row = self._require(session, uid)
            row.custom_claims = copy.deepcopy(payload) if payload is not None else None
        self._run(op, write=True)

    def revoke_credentials(self, uid: str, at: Optional[datetime] = None) -> datetime:
        """Invalidate every token issued before ``at`` (default: now)."""
        moment = at or utcnow()

        def op(session):
            row = self._require(session, uid)
            row.tokens_valid_after = moment
        self._run(op, write=True)
        return moment

    def record_sign_in(self, uid: str) -> None:
        def op(session):
            row = self._require(session, uid)
            row.last_sign_in_at = utcnow()
        self._run(op, write=True)

    def verify_password(self, email: str, password: str) -> Optional[UserRecord]:
        def op(session):
            row = session.execute(select(Identity).where(Identity.email == email.lower())).scalar_one_or_none()
            if row is None or row.disabled or not row.verify_password(password):
                return None
            return UserRecord.from_row(row)
        return self._run(op)

    def is_token_revoked(self, uid: Optional[str], issued_at: Optional[int]) -> bool:
        if uid is None or issued_at is None:
            return True
        try:
            user = self.get_user(str(uid))
        except UserNotFound:
            return True
        if user.disabled:
            return True
        if user.tokens_valid_after is None:
            return False
        # iat has one-second resolution
        return int(issued_at) < int(user.tokens_valid_after.timestamp())

    def list_users(self, page_size: int, page_token: Optional[str] = None) -> UserPage:
        """Keyset pagination ordered by uid; the token is the last uid of the previous page."""
        def op(session):
            q = select(Identity).order_by(Identity.uid.asc())
            if page_token:
                q = q.where(Identity.uid > page_token)
            rows = session.execute(q.limit(page_size + 1)).scalars().all()
            has_more = len(rows) > page_size
            rows = rows[:page_size]
            return UserPage(
                users=[UserRecord.from_row(r) for r in rows],
                page_token=rows[-1].uid if has_more and rows else None,
            )
        return self._run(op)


__all__ = ['IdentityProvider', 'UserRecord', 'UserPage']
