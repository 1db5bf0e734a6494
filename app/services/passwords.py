"""
Credential Hashing - Argon2id for passwords, keyed HMAC for OTP codes.

Plaintext credentials never reach the database.
"""

import hashlib
import hmac

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from structlog import get_logger

logger = get_logger(__name__)

# Verified against when the account does not exist so both paths cost one Argon2 verify
_DUMMY_PASSWORD = "not-a-real-password"


class PasswordService:
    """Hash and verify user passwords with Argon2id."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.hasher = hasher or PasswordHasher()
        self._dummy_hash = self.hasher.hash(_DUMMY_PASSWORD)

    def hash(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """Return True when password matches; malformed hashes never match."""
        try:
            return self.hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as e:
            logger.warning("password_hash_unverifiable", error=str(e))
            return False

    def burn_verify(self, password: str) -> None:
        """Spend one verify on a dummy hash for unknown accounts."""
        self.verify(self._dummy_hash, password)

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self.hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True


def hash_otp_code(secret: str, identifier: str, purpose: str, code: str) -> str:
    """HMAC-SHA256 of an OTP code bound to its identifier and purpose."""
    message = f"{identifier}|{purpose}|{code}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def otp_code_matches(secret: str, identifier: str, purpose: str, code: str, code_hash: str) -> bool:
    """Constant-time comparison of a submitted code against a stored digest."""
    return hmac.compare_digest(hash_otp_code(secret, identifier, purpose, code), code_hash)
