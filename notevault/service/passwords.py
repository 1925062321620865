from __future__ import annotations

import secrets

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from notevault.logging import get_logger

logger = get_logger(__name__)

_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return an argon2id hash; the salt is fresh on every call."""
    return _hasher.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return _hasher.verify(hashed, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unusable")
        return False


def generate_placeholder_password() -> str:
    """Random secret for accounts that only ever sign in through a provider."""
    return secrets.token_urlsafe(32)


__all__ = ["hash_password", "verify_password", "generate_placeholder_password"]
