from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from utils.token_store import MemoryRefreshTokenStore, RefreshTokenReuseError
from utils.tokens import Claims, TokenError, TokenIssuer

SECRET = "issuer-secret"


def _issuer() -> TokenIssuer:
    return TokenIssuer(MemoryRefreshTokenStore(), secret=SECRET)


def _claims(**overrides) -> Claims:
    values = dict(id=7, username="alice", email="alice@example.com", role="owner", company_id=3)
    values.update(overrides)
    return Claims(**values)


def test_access_token_carries_claim_shape() -> None:
    token = _issuer().issue_access_token(_claims())

    decoded = jwt.decode(token, SECRET, algorithms=["HS256"])

    assert {key: decoded[key] for key in ("id", "username", "email", "role", "companyId")} == {
        "id": 7,
        "username": "alice",
        "email": "alice@example.com",
        "role": "owner",
        "companyId": 3,
    }
    assert decoded["exp"] - decoded["iat"] == 15 * 60


def test_verify_access_token_round_trip() -> None:
    issuer = _issuer()

    claims = issuer.verify_access_token(issuer.issue_access_token(_claims(company_id=None)))

    assert claims == _claims(company_id=None)


def test_verify_access_token_rejects_expired_token() -> None:
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    token = jwt.encode(
        {**_claims().to_payload(), "type": "access", "exp": int(past.timestamp())},
        SECRET,
        algorithm="HS256",
    )

    with pytest.raises(TokenError, match="expired"):
        _issuer().verify_access_token(token)


def test_verify_access_token_rejects_foreign_signature() -> None:
    token = TokenIssuer(MemoryRefreshTokenStore(), secret="someone-else").issue_access_token(_claims())

    with pytest.raises(TokenError):
        _issuer().verify_access_token(token)


def test_verify_access_token_rejects_incomplete_claims() -> None:
    token = jwt.encode({"id": 1, "type": "access"}, SECRET, algorithm="HS256")

    with pytest.raises(TokenError, match="missing claims"):
        _issuer().verify_access_token(token)


def test_issue_token_pair_persists_refresh_token() -> None:
    issuer = _issuer()

    pair = issuer.issue_token_pair(_claims(), "127.0.0.1")

    record = issuer.store.find_usable(pair.refresh_token)
    assert record is not None
    assert record.user_id == 7
    assert record.created_by_ip == "127.0.0.1"
    assert pair.expires_at == record.expires
    assert issuer.verify_access_token(pair.access_token).id == 7


def test_rotate_token_pair_is_single_use() -> None:
    issuer = _issuer()
    first = issuer.issue_token_pair(_claims())

    second = issuer.rotate_token_pair(first.refresh_token, _claims())

    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    with pytest.raises(RefreshTokenReuseError):
        issuer.rotate_token_pair(first.refresh_token, _claims())


def test_access_ttl_in_milliseconds() -> None:
    assert _issuer().access_ttl_ms == 900000
