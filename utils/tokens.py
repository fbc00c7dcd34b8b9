"""
Token issuance:
- access tokens: HS256 JWTs (PyJWT), 15 minutes, verified from signature and expiry alone
- refresh tokens: opaque values persisted through a RefreshTokenStore

Routes only call issue_token_pair() at login and rotate_token_pair() at refresh.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from utils.security import generate_jti
from utils.token_store import RefreshTokenStore

ACCESS_TOKEN_TTL = timedelta(minutes=15)
CLAIM_KEYS = ("id", "username", "email", "role", "companyId")


class TokenError(Exception):
    """Access token could not be verified."""


@dataclass(frozen=True)
class Claims:
    """Identity attributes carried inside an access token."""

    id: int
    username: str
    email: str
    role: str
    company_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "Claims":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            company_id=user.company_id,
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Claims":
        missing = [key for key in CLAIM_KEYS if key not in payload]
        if missing:
            raise TokenError(f"Token is missing claims: {', '.join(missing)}")
        return cls(
            id=payload["id"],
            username=payload["username"],
            email=payload["email"],
            role=payload["role"],
            company_id=payload["companyId"],
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "companyId": self.company_id,
        }


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: datetime  # refresh token expiry, naive UTC


class TokenIssuer:
    def __init__(
        self,
        store: RefreshTokenStore,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
    ):
        self.store = store
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl

    @property
    def access_ttl_ms(self) -> int:
        return int(self.access_ttl.total_seconds() * 1000)

    def issue_access_token(self, identity) -> str:
        claims = identity if isinstance(identity, Claims) else Claims.from_user(identity)
        now = datetime.now(timezone.utc)
        payload = claims.to_payload()
        payload.update(
            {
                "iat": int(now.timestamp()),
                "exp": int((now + self.access_ttl).timestamp()),
                "jti": generate_jti(),
                "type": "access",
            }
        )
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> Claims:
        """
        Decode and validate an access token. Raises TokenError on a bad
        signature, an expired token or an unexpected claim shape.
        """
        try:
            decoded = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise TokenError("Token expired")
        except jwt.InvalidTokenError as exc:
            raise TokenError(f"Invalid token: {exc}")

        if decoded.get("type") != "access":
            raise TokenError("Wrong token type")
        return Claims.from_payload(decoded)

    def issue_refresh_token(self, identity, origin_ip: Optional[str] = None):
        return self.store.create(identity.id, origin_ip)

    def issue_token_pair(self, identity, origin_ip: Optional[str] = None) -> TokenPair:
        record = self.issue_refresh_token(identity, origin_ip)
        return TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=record.token,
            expires_at=record.expires,
        )

    def rotate_token_pair(self, old_token: str, identity, origin_ip: Optional[str] = None) -> TokenPair:
        """Consume old_token and mint a fresh pair; store errors propagate."""
        record = self.store.rotate(old_token, identity.id, origin_ip)
        return TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=record.token,
            expires_at=record.expires,
        )
