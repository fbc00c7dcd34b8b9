from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from models import storage
from models.base_model import utcnow
from utils.token_store import (
    InvalidRefreshTokenError,
    MemoryRefreshTokenStore,
    RefreshTokenReuseError,
    SqlRefreshTokenStore,
    create_token_store,
)


@pytest.fixture
def user_id(make_user):
    return make_user("alice")


@pytest.fixture(params=["database", "memory"])
def store(request, app, user_id):
    if request.param == "database":
        token_store = app.extensions["token_store"]
        assert isinstance(token_store, SqlRefreshTokenStore)
        return token_store
    return MemoryRefreshTokenStore()


def test_create_persists_usable_token(store, user_id) -> None:
    record = store.create(user_id, "10.0.0.1")

    found = store.find_usable(record.token)

    assert found is not None
    assert found.user_id == user_id
    assert found.created_by_ip == "10.0.0.1"
    assert found.is_active is True
    assert found.is_revoked is False
    assert found.is_expired is False
    assert found.expires - utcnow() > timedelta(days=6, hours=23)


def test_find_usable_unknown_token_returns_none(store, user_id) -> None:
    assert store.find_usable("does-not-exist") is None
    assert store.find_usable("") is None


def test_rotate_links_old_token_to_replacement(store, user_id) -> None:
    original = store.create(user_id, "10.0.0.1")

    replacement = store.rotate(original.token, user_id, "10.0.0.2")

    old = store.find(original.token)
    assert replacement.token != original.token
    assert old.is_active is False
    assert old.replaced_by_token == replacement.token
    assert store.find_usable(original.token) is None
    assert store.find_usable(replacement.token) is not None


def test_rotate_twice_with_same_token_is_rejected_without_side_effects(store, user_id) -> None:
    original = store.create(user_id)
    replacement = store.rotate(original.token, user_id)

    with pytest.raises(RefreshTokenReuseError) as exc:
        store.rotate(original.token, user_id)

    assert exc.value.user_id == user_id
    old = store.find(original.token)
    assert old.replaced_by_token == replacement.token
    assert old.is_revoked is False
    assert store.find_usable(replacement.token) is not None


def test_rotate_unknown_token_is_rejected(store, user_id) -> None:
    with pytest.raises(InvalidRefreshTokenError) as exc:
        store.rotate("never-issued", user_id)

    assert not isinstance(exc.value, RefreshTokenReuseError)


def test_rotate_rejects_token_of_another_identity(store, user_id) -> None:
    record = store.create(user_id)

    with pytest.raises(InvalidRefreshTokenError):
        store.rotate(record.token, user_id + 1000)

    assert store.find_usable(record.token) is not None


def test_revoke_is_idempotent(store, user_id) -> None:
    record = store.create(user_id)

    assert store.revoke(record.token, "10.0.0.9") is True
    assert store.find_usable(record.token) is None
    assert store.revoke(record.token, "10.0.0.9") is False
    assert store.find_usable(record.token) is None

    revoked = store.find(record.token)
    assert revoked.is_revoked is True
    assert revoked.is_active is False
    assert revoked.revoked_by_ip == "10.0.0.9"
    assert revoked.revoked_at is not None


def test_revoked_token_cannot_be_rotated(store, user_id) -> None:
    record = store.create(user_id)
    store.revoke(record.token)

    with pytest.raises(InvalidRefreshTokenError):
        store.rotate(record.token, user_id)


def test_revoke_all_only_touches_active_tokens_of_that_identity(store, user_id, make_user) -> None:
    other_id = make_user("bob")
    first = store.create(user_id)
    second = store.create(user_id)
    theirs = store.create(other_id)
    store.revoke(second.token)

    assert store.revoke_all(user_id) == 1
    assert store.find_usable(first.token) is None
    assert store.find_usable(theirs.token) is not None


def test_expired_token_is_not_usable_before_sweep(store, user_id) -> None:
    store.ttl = timedelta(seconds=-1)
    record = store.create(user_id)

    assert store.find_usable(record.token) is None
    assert store.find(record.token).is_expired is False
    with pytest.raises(InvalidRefreshTokenError):
        store.rotate(record.token, user_id)


def test_sweep_expired_flags_only_past_expiry_rows(store, user_id) -> None:
    live = store.create(user_id)
    store.ttl = timedelta(seconds=-1)
    stale = store.create(user_id)

    assert store.sweep_expired() == 1
    assert store.sweep_expired() == 0
    assert store.find(stale.token).is_expired is True
    assert store.find(live.token).is_expired is False
    assert store.find_usable(live.token) is not None


def _race(store, token, user_id):
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            result = store.rotate(token, user_id)
            outcome = ("ok", result.token)
        except InvalidRefreshTokenError as exc:
            outcome = ("rejected", exc)
        finally:
            storage.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_concurrent_rotation_has_exactly_one_winner(store, user_id) -> None:
    record = store.create(user_id)

    outcomes = _race(store, record.token, user_id)

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["ok", "rejected"]
    winner = next(value for kind, value in outcomes if kind == "ok")
    assert store.find(record.token).replaced_by_token == winner


def test_create_token_store_factory(app) -> None:
    assert isinstance(create_token_store({"TOKEN_STORE_BACKEND": "memory"}), MemoryRefreshTokenStore)
    assert isinstance(
        create_token_store({"TOKEN_STORE_BACKEND": "database"}, session_factory=storage.get_session()),
        SqlRefreshTokenStore,
    )
    with pytest.raises(ValueError):
        create_token_store({"TOKEN_STORE_BACKEND": "database"})
    with pytest.raises(ValueError):
        create_token_store({"TOKEN_STORE_BACKEND": "redis"})
