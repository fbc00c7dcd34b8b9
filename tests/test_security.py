from __future__ import annotations

import bcrypt
import pytest
from argon2 import PasswordHasher

from tests.conftest import PASSWORD, PASSWORD_HASH
from utils.security import hash_password, verify_password, generate_opaque_token


def test_hash_password_layout_is_key_then_salt() -> None:
    key, salt = PASSWORD_HASH.split(".")

    assert len(key) == 128
    assert len(salt) == 32
    int(key, 16)
    int(salt, 16)


def test_hash_password_uses_fresh_salt() -> None:
    assert hash_password("same-secret") != hash_password("same-secret")


def test_verify_password_round_trip() -> None:
    assert verify_password(PASSWORD, PASSWORD_HASH) is True


@pytest.mark.parametrize(
    "candidate",
    [
        PASSWORD[:-1] + "X",
        "X" + PASSWORD[1:],
        PASSWORD.upper(),
        PASSWORD[:-1],
        PASSWORD + "!",
        "",
    ],
)
def test_verify_password_rejects_mutations(candidate: str) -> None:
    assert verify_password(candidate, PASSWORD_HASH) is False


def test_verify_password_accepts_legacy_salt_then_key_layout() -> None:
    key, salt = PASSWORD_HASH.split(".")
    legacy = f"{salt}.{key}"

    assert verify_password(PASSWORD, legacy) is True
    assert verify_password("wrong-password", legacy) is False


def test_verify_password_falls_back_to_bcrypt() -> None:
    stored = bcrypt.hashpw(PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()

    assert verify_password(PASSWORD, stored) is True
    assert verify_password("wrong-password", stored) is False


def test_verify_password_falls_back_to_argon2() -> None:
    stored = PasswordHasher().hash(PASSWORD)

    assert verify_password(PASSWORD, stored) is True
    assert verify_password("wrong-password", stored) is False


@pytest.mark.parametrize(
    "stored",
    [
        None,
        "",
        "no-separator-here",
        "a.b.c",
        "zz" * 64 + "." + "ab" * 16,
        "ab" * 16 + "." + "cd" * 16,
        "$2b$12$not-a-real-bcrypt-hash",
        "$argon2id$garbage",
    ],
)
def test_verify_password_never_raises_on_malformed_credentials(stored) -> None:
    assert verify_password(PASSWORD, stored) is False


def test_opaque_tokens_are_not_jwts() -> None:
    token = generate_opaque_token()

    assert token.count(".") == 0
    assert token != generate_opaque_token()
