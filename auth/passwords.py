"""
auth/passwords.py -- Credential hashing and verification (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection creates a
  password longer than 72 bytes, which bcrypt 4.x rejects, and bcrypt 5.x
  raises on any input over 72 bytes. We truncate to 72 bytes ourselves, the
  same way for hash() and verify(), so behaviour matches classic bcrypt on
  every library version. The API layer caps passwords at 72 characters anyway.

  bcrypt.gensalt() draws a fresh salt from os.urandom on every call, so the
  same plaintext hashes to a different string each time.

  verify_dummy() exists for timing equalization [C1]: when an email is not
  registered, AuthService still runs one bcrypt check so response time does
  not reveal whether the account exists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import HashingError

logger = logging.getLogger("authkeep.auth.passwords")

_BCRYPT_MAX_BYTES = 72
_DEFAULT_ROUNDS = 12


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """One-way password hashing with a configurable bcrypt cost.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("s3cret!")
        hasher.verify("s3cret!", stored)   # True
    """

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("authkeep_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of plain.

        Raises HashingError if bcrypt cannot produce a salt or a hash.
        """
        try:
            return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, OSError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise HashingError("Password hashing failed") from exc

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed.

        A wrong password returns False. Only a malformed stored hash raises
        HashingError -- that is data corruption, not a caller mistake.
        """
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError as exc:
            logger.error("Stored password hash is malformed")
            raise HashingError("Stored password hash is malformed") from exc

    def verify_dummy(self, plain: str) -> None:
        """Spend one bcrypt verification without a real account [C1]."""
        self.verify(plain, self._dummy_hash)
