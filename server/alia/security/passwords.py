"""
Password hashing and one-time tokens for account verification.
"""
import logging
import secrets

import bcrypt

logger = logging.getLogger("alia.passwords")

BCRYPT_ROUNDS = 12
# bcrypt only reads the first 72 bytes; existing hashes were made that way
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify a password against its hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def generate_secure_token(length: int = 32) -> str:
    """Hex token built from `length` random bytes."""
    return secrets.token_hex(length)
