"""
Refresh token persistence.

Two implementations share the RefreshTokenStore contract:
- SqlRefreshTokenStore: rows in the refresh_tokens table (SQLAlchemy)
- MemoryRefreshTokenStore: in-process dict, for deployments without a database

create_token_store() picks one at application start-up.

A token is usable only when it is active, not revoked, not flagged expired
and its expiry is still in the future. rotate() consumes a token with one
conditional update, so two callers presenting the same token can never both
succeed.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from models.base_model import utcnow
from models.refresh_token import RefreshToken
from utils.security import generate_opaque_token

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)


class InvalidRefreshTokenError(Exception):
    """The presented refresh token cannot be used."""


class RefreshTokenReuseError(InvalidRefreshTokenError):
    """The presented refresh token was already rotated: a replay signal."""

    def __init__(self, message: str, user_id: Optional[int] = None):
        super().__init__(message)
        self.user_id = user_id


def is_usable(record, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return bool(
        record.is_active
        and not record.is_revoked
        and not record.is_expired
        and record.expires > now
    )


def _classify_failure(record) -> InvalidRefreshTokenError:
    if record is not None and record.replaced_by_token:
        return RefreshTokenReuseError("Refresh token already rotated", user_id=record.user_id)
    return InvalidRefreshTokenError("Invalid or expired refresh token")


class RefreshTokenStore:
    """Contract shared by every refresh token backend."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, token_factory: Callable[[], str] = generate_opaque_token):
        self.ttl = ttl
        self._token_factory = token_factory

    def create(self, user_id: int, origin_ip: Optional[str] = None):
        raise NotImplementedError

    def find(self, token: str):
        """Return the record in any state, or None."""
        raise NotImplementedError

    def find_usable(self, token: str):
        raise NotImplementedError

    def rotate(self, old_token: str, user_id: int, origin_ip: Optional[str] = None):
        """Consume old_token and return its replacement.

        Raises InvalidRefreshTokenError (or RefreshTokenReuseError) when the
        old token is not usable; nothing is written in that case.
        """
        raise NotImplementedError

    def revoke(self, token: str, origin_ip: Optional[str] = None) -> bool:
        """Revoke a token. Returns True when a row changed; revoking twice is a no-op."""
        raise NotImplementedError

    def revoke_all(self, user_id: int, origin_ip: Optional[str] = None) -> int:
        raise NotImplementedError

    def sweep_expired(self) -> int:
        """Flag past-expiry rows as expired. Bookkeeping only."""
        raise NotImplementedError


class SqlRefreshTokenStore(RefreshTokenStore):
    def __init__(self, session_factory, ttl: timedelta = DEFAULT_TTL, token_factory=generate_opaque_token):
        super().__init__(ttl=ttl, token_factory=token_factory)
        # a scoped_session, or any callable returning one
        self._session_factory = session_factory

    def _session(self):
        return self._session_factory()

    def _new_row(self, user_id: int, origin_ip: Optional[str], now: datetime) -> RefreshToken:
        return RefreshToken(
            token=self._token_factory(),
            user_id=user_id,
            expires=now + self.ttl,
            created_at=now,
            updated_at=now,
            created_by_ip=origin_ip,
            is_active=True,
            is_revoked=False,
            is_expired=False,
        )

    def create(self, user_id: int, origin_ip: Optional[str] = None) -> RefreshToken:
        session = self._session()
        row = self._new_row(user_id, origin_ip, utcnow())
        session.add(row)
        try:
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return row

    def find(self, token: str) -> Optional[RefreshToken]:
        session = self._session()
        return session.execute(
            select(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find_usable(self, token: str) -> Optional[RefreshToken]:
        if not token:
            return None
        session = self._session()
        return session.execute(
            select(RefreshToken).where(
                RefreshToken.token == token,
                RefreshToken.is_active.is_(True),
                RefreshToken.is_revoked.is_(False),
                RefreshToken.is_expired.is_(False),
                RefreshToken.expires > utcnow(),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def rotate(self, old_token: str, user_id: int, origin_ip: Optional[str] = None) -> RefreshToken:
        session = self._session()
        now = utcnow()
        replacement = self._new_row(user_id, origin_ip, now)
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.token == old_token,
                RefreshToken.user_id == user_id,
                RefreshToken.is_active.is_(True),
                RefreshToken.is_revoked.is_(False),
                RefreshToken.is_expired.is_(False),
                RefreshToken.expires > now,
            )
            .values(is_active=False, replaced_by_token=replacement.token, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
            if result.rowcount != 1:
                session.rollback()
                raise _classify_failure(self.find(old_token))
            session.add(replacement)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return replacement

    def revoke(self, token: str, origin_ip: Optional[str] = None) -> bool:
        session = self._session()
        now = utcnow()
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.token == token, RefreshToken.is_revoked.is_(False))
            .values(
                is_revoked=True,
                is_active=False,
                revoked_at=now,
                revoked_by_ip=origin_ip,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return result.rowcount > 0

    def revoke_all(self, user_id: int, origin_ip: Optional[str] = None) -> int:
        session = self._session()
        now = utcnow()
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_active.is_(True))
            .values(
                is_revoked=True,
                is_active=False,
                revoked_at=now,
                revoked_by_ip=origin_ip,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return result.rowcount

    def sweep_expired(self) -> int:
        session = self._session()
        now = utcnow()
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.expires <= now, RefreshToken.is_expired.is_(False))
            .values(is_expired=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return result.rowcount


@dataclass
class RefreshTokenRecord:
    """In-memory counterpart of the RefreshToken row."""

    token: str
    user_id: int
    expires: datetime
    created_at: datetime = field(default_factory=utcnow)
    created_by_ip: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by_ip: Optional[str] = None
    replaced_by_token: Optional[str] = None
    is_expired: bool = False
    is_revoked: bool = False
    is_active: bool = True


class MemoryRefreshTokenStore(RefreshTokenStore):
    def __init__(self, ttl: timedelta = DEFAULT_TTL, token_factory=generate_opaque_token):
        super().__init__(ttl=ttl, token_factory=token_factory)
        self._tokens: Dict[str, RefreshTokenRecord] = {}
        self._lock = threading.Lock()

    def _new_record(self, user_id: int, origin_ip: Optional[str], now: datetime) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            token=self._token_factory(),
            user_id=user_id,
            expires=now + self.ttl,
            created_at=now,
            created_by_ip=origin_ip,
        )

    def create(self, user_id: int, origin_ip: Optional[str] = None) -> RefreshTokenRecord:
        record = self._new_record(user_id, origin_ip, utcnow())
        with self._lock:
            self._tokens[record.token] = record
        return record

    def find(self, token: str) -> Optional[RefreshTokenRecord]:
        return self._tokens.get(token)

    def find_usable(self, token: str) -> Optional[RefreshTokenRecord]:
        record = self._tokens.get(token) if token else None
        if record is None or not is_usable(record):
            return None
        return record

    def rotate(self, old_token: str, user_id: int, origin_ip: Optional[str] = None) -> RefreshTokenRecord:
        now = utcnow()
        with self._lock:
            record = self._tokens.get(old_token)
            if record is None or record.user_id != user_id or not is_usable(record, now):
                raise _classify_failure(record)
            replacement = self._new_record(user_id, origin_ip, now)
            record.is_active = False
            record.replaced_by_token = replacement.token
            self._tokens[replacement.token] = replacement
        return replacement

    def revoke(self, token: str, origin_ip: Optional[str] = None) -> bool:
        with self._lock:
            record = self._tokens.get(token)
            if record is None or record.is_revoked:
                return False
            record.is_revoked = True
            record.is_active = False
            record.revoked_at = utcnow()
            record.revoked_by_ip = origin_ip
        return True

    def revoke_all(self, user_id: int, origin_ip: Optional[str] = None) -> int:
        now = utcnow()
        count = 0
        with self._lock:
            for record in self._tokens.values():
                if record.user_id == user_id and record.is_active:
                    record.is_revoked = True
                    record.is_active = False
                    record.revoked_at = now
                    record.revoked_by_ip = origin_ip
                    count += 1
        return count

    def sweep_expired(self) -> int:
        now = utcnow()
        count = 0
        with self._lock:
            for record in self._tokens.values():
                if record.expires <= now and not record.is_expired:
                    record.is_expired = True
                    count += 1
        return count


def create_token_store(config, session_factory=None) -> RefreshTokenStore:
    """Select the refresh token backend from TOKEN_STORE_BACKEND."""
    backend = (config.get("TOKEN_STORE_BACKEND") or "database").lower()
    ttl = config.get("REFRESH_TOKEN_EXPIRES", DEFAULT_TTL)
    if backend == "memory":
        logger.warning("Refresh tokens are kept in process memory; sessions end on restart")
        return MemoryRefreshTokenStore(ttl=ttl)
    if backend in ("database", "sql"):
        if session_factory is None:
            raise ValueError("database token store needs a session factory")
        return SqlRefreshTokenStore(session_factory, ttl=ttl)
    raise ValueError(f"Unknown TOKEN_STORE_BACKEND: {backend}")
