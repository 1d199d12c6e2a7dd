"""
Security utilities for authentication.

Provides:
- API key material generation (CSPRNG, fixed shape)
- API key hashing and verification (bcrypt) plus a deterministic lookup digest
- JWT decoding for user bearer tokens issued by the session layer
"""

import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from agencyhub.config import settings
from agencyhub.core.exceptions import KeyGenerationError
from agencyhub.utils.datetime import utcnow

logger = logging.getLogger(__name__)

RANDOM_BYTES_LENGTH = 32  # 32 bytes = 64 hex characters
DISPLAY_PREFIX_LENGTH = 8


@dataclass(frozen=True)
class GeneratedKey:
    """Plaintext key material. Exists only while a key is being created."""

    secret: str
    display_prefix: str

    def __repr__(self) -> str:
        return f"GeneratedKey(display_prefix={self.display_prefix!r})"


def generate_api_key(prefix: str | None = None) -> GeneratedKey:
    """
    Generate a new API key of the form ``<prefix><64 lowercase hex chars>``.

    Raises:
        KeyGenerationError: If the OS randomness source is unavailable
    """
    prefix = prefix or settings.api_key_prefix

    try:
        random_part = secrets.token_hex(RANDOM_BYTES_LENGTH)
    except (OSError, NotImplementedError) as e:
        logger.critical("Secure randomness source unavailable: %s", e)
        raise KeyGenerationError("Secure randomness source unavailable") from e

    secret = f"{prefix}{random_part}"
    return GeneratedKey(secret=secret, display_prefix=extract_display_prefix(secret))


def api_key_length(prefix: str | None = None) -> int:
    """Total length of every well-formed key for a prefix."""
    return len(prefix or settings.api_key_prefix) + RANDOM_BYTES_LENGTH * 2


@lru_cache(maxsize=8)
def _format_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(prefix)}[0-9a-f]{{{RANDOM_BYTES_LENGTH * 2}}}")


def is_valid_api_key_format(candidate: str, prefix: str | None = None) -> bool:
    """Cheap shape check run before any hashing."""
    prefix = prefix or settings.api_key_prefix
    if len(candidate) != api_key_length(prefix):
        return False
    return _format_pattern(prefix).fullmatch(candidate) is not None


def extract_display_prefix(secret: str) -> str:
    """First 8 characters, e.g. ``ahk_a1b2``. Not secret."""
    if len(secret) < DISPLAY_PREFIX_LENGTH:
        raise ValueError("Invalid API key format")
    return secret[:DISPLAY_PREFIX_LENGTH]


class ApiKeyHasher:
    """
    One-way hashing for API keys.

    ``hash``/``verify`` use bcrypt, so two hashes of the same key differ
    (the salt is embedded in the stored string). Salted hashes cannot be
    recomputed for an index lookup, so ``lookup_digest`` gives a keyed,
    deterministic digest used to find the record; ``verify`` then confirms
    it against the stored bcrypt hash.
    """

    def __init__(self, rounds: int = 10, lookup_secret: str | None = None) -> None:
        self.rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )
        self._lookup_key = (lookup_secret or settings.api_key_lookup_secret).encode()

    def hash(self, secret: str) -> str:
        """Bcrypt hash of ``secret`` with a fresh salt."""
        return self._context.hash(secret)

    def verify(self, secret: str, stored_hash: str) -> bool:
        """Timing-safe check of ``secret`` against a stored bcrypt hash."""
        try:
            return self._context.verify(secret, stored_hash)
        except (ValueError, TypeError):
            # Unrecognised or corrupted stored hash
            logger.warning("Stored API key hash could not be parsed")
            return False

    def lookup_digest(self, secret: str) -> str:
        """HMAC-SHA256 hex digest, stable across calls for indexed lookup."""
        return hmac.new(self._lookup_key, secret.encode(), hashlib.sha256).hexdigest()


def create_access_token(
    subject: str,
    expires_delta: timedelta | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """
    Create a JWT access token for a user.

    Tokens are normally issued by the session layer; this exists for
    operator scripts and tests.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    now = utcnow()
    to_encode: dict[str, Any] = dict(extra_claims or {})
    to_encode.update({
        "sub": str(subject),
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
    })

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a JWT token.

    Raises:
        JWTError: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
    except JWTError as e:
        logger.warning("JWT decode error: %s", e)
        raise
