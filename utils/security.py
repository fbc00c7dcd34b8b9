"""
security helpers:
- scrypt password hashing, stored as "<key hex>.<salt hex>"
- verification that also accepts the legacy "<salt hex>.<key hex>" layout
  and hashes produced by bcrypt or argon2-cffi for older accounts
- JTI generation for token identifiers

Stored credentials carry no format column, so the format is detected from
the string itself.
TODO: add a hash_format column on users and backfill it, then drop the
segment-length detection in _split_scrypt.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Optional, Tuple

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)

ph = PasswordHasher()

SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
KEY_LENGTH = 64
SALT_BYTES = 16


def _scrypt(password: str, salt: str, dklen: int) -> bytes:
    # the hex salt string itself is the KDF salt, matching rows written before the migration
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=dklen,
    )


def hash_password(password: str) -> str:
    """Hash a plaintext password with scrypt and a fresh random salt.

    Raises whatever the KDF raises; a failure here means the interpreter's
    OpenSSL cannot run scrypt and is not recoverable per request.
    """
    salt = secrets.token_hex(SALT_BYTES)
    key = _scrypt(password, salt, KEY_LENGTH)
    return f"{key.hex()}.{salt}"


def _split_scrypt(stored: str) -> Optional[Tuple[bytes, str]]:
    """Return (derived key, salt) for a dotted scrypt credential, or None."""
    parts = stored.split(".")
    if len(parts) != 2:
        return None
    first, second = parts
    if len(first) == len(second):
        return None
    # the derived key is always the longer segment
    key_hex, salt = (first, second) if len(first) > len(second) else (second, first)
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        return None
    if not key or not salt:
        return None
    return key, salt


def _verify_scrypt(password: str, stored: str) -> bool:
    parsed = _split_scrypt(stored)
    if parsed is None:
        return False
    key, salt = parsed
    try:
        candidate = _scrypt(password, salt, len(key))
    except (ValueError, MemoryError):
        logger.warning("scrypt comparison failed for a stored credential", exc_info=True)
        return False
    return hmac.compare_digest(candidate, key)


def _verify_legacy(password: str, stored: str) -> bool:
    if stored.startswith("$argon2"):
        try:
            return ph.verify(stored, password)
        except (VerificationError, InvalidHashError):
            return False
    if stored.startswith("$2"):
        try:
            return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
        except ValueError:
            return False
    return False


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a plaintext password against a stored credential.

    Never raises for a malformed credential; it simply does not match.
    """
    if not password_hash or not isinstance(password_hash, str) or password is None:
        return False
    if _verify_scrypt(password, password_hash):
        return True
    return _verify_legacy(password, password_hash)


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID)."""
    return str(uuid.uuid4())


def generate_opaque_token() -> str:
    """Random, non-decodable value used for refresh tokens."""
    return secrets.token_urlsafe(48)
