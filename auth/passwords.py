"""
auth/passwords.py -- One-way password hashing, verification, and policy.

Security design decisions:
  KDF: bcrypt.kdf (bcrypt-pbkdf) from the bcrypt package. It is PBKDF2 with
       the bcrypt cipher as the PRF, so every round costs a full bcrypt key
       schedule -- CPU-hard in the way plain PBKDF2-SHA256 is not. The round
       count comes from Settings.password_kdf_rounds.

  Encoding: base64(salt || key), 16-byte random salt then 32-byte key. A fresh
       salt per call means hashing the same password twice yields two different
       strings that both verify. That is required, not a bug.

  Comparison: hmac.compare_digest, so verification time does not depend on
       how many leading bytes of the key matched.

  Failure: hash_password() with a non-string is a programming error and
       raises TypeError; an empty string raises ValueError (bcrypt-pbkdf
       cannot derive from zero bytes). verify_password() never raises --
       malformed stored hashes simply do not verify.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import os

import bcrypt

from core.config import get_settings

logger = logging.getLogger("volcanion.auth")

_settings = get_settings()

SALT_SIZE = 16
KEY_SIZE = 32

# Symbols that satisfy the "one special character" policy rule.
POLICY_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
MIN_PASSWORD_LENGTH = 8


def _derive(password: str, salt: bytes, rounds: int) -> bytes:
    # Rounds are validated by Settings; low values are a test-suite choice,
    # so bcrypt's own few-rounds warning would only be noise.
    return bcrypt.kdf(
        password=password.encode("utf-8"),
        salt=salt,
        desired_key_bytes=KEY_SIZE,
        rounds=rounds,
        ignore_few_rounds=True,
    )


def hash_password(password: str, rounds: int | None = None) -> str:
    """Return base64(salt || key) for the given plaintext password."""
    if not isinstance(password, str):
        raise TypeError("password must be a str")
    if not password:
        raise ValueError("password must not be empty")
    salt = os.urandom(SALT_SIZE)
    key = _derive(password, salt, rounds or _settings.password_kdf_rounds)
    return base64.b64encode(salt + key).decode("ascii")


def verify_password(password: str, encoded_hash: str, rounds: int | None = None) -> bool:
    """Return True if password matches encoded_hash. False on any malformed input."""
    if not isinstance(password, str) or not password or not isinstance(encoded_hash, str):
        return False
    try:
        raw = base64.b64decode(encoded_hash, validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(raw) != SALT_SIZE + KEY_SIZE:
        return False
    salt, expected = raw[:SALT_SIZE], raw[SALT_SIZE:]
    actual = _derive(password, salt, rounds or _settings.password_kdf_rounds)
    return hmac.compare_digest(actual, expected)


def meets_policy(password: str | None) -> bool:
    """At least 8 chars with an uppercase, a lowercase, a digit, and an approved symbol."""
    if not password or not password.strip() or len(password) < MIN_PASSWORD_LENGTH:
        return False
    return (
        any(c.isupper() for c in password)
        and any(c.islower() for c in password)
        and any(c.isdigit() for c in password)
        and any(c in POLICY_SYMBOLS for c in password)
    )


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login verifies against this when the
# identifier is unknown, so "no such account" costs the same KDF work as
# "wrong password".
DUMMY_HASH: str = hash_password("volcanion_timing_dummy")
