from __future__ import annotations

import secrets
from typing import Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from tasknest.logging import get_logger
from tasknest.storage.models import User

logger = get_logger(__name__)


class PasswordHashing(Protocol):
    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, digest: str) -> bool: ...


class TokenSource(Protocol):
    def new_opaque_token(self) -> str: ...


class UserLookup(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...


class Argon2PasswordHashing:
    """argon2id digests; the parameters travel inside each digest."""

    def __init__(self, hasher: Optional[PasswordHasher] = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, plain: str) -> str:
        return self._hasher.hash(plain)

    def verify(self, plain: str, digest: str) -> bool:
        try:
            return self._hasher.verify(digest, plain)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False


class SecretsTokenSource:
    """URL-safe opaque tokens carrying ``nbytes`` of randomness."""

    def __init__(self, nbytes: int = 32) -> None:
        self.nbytes = nbytes

    def new_opaque_token(self) -> str:
        return secrets.token_urlsafe(self.nbytes)


class CredentialVerifier:
    """Checks an email/password pair against the stored digest.

    Unknown email and wrong password are indistinguishable to callers; both
    return ``None``.
    """

    def __init__(self, store: UserLookup, hashing: PasswordHashing) -> None:
        self.store = store
        self.hashing = hashing

    def verify(self, email: str, password: str) -> Optional[User]:
        user = self.store.get_user_by_email(email)
        if user is None:
            logger.info("credential_check_failed", reason="unknown_account")
            return None
        if not self.hashing.verify(password, user.password):
            logger.info(
                "credential_check_failed", reason="password_mismatch", user_no=user.user_no
            )
            return None
        return user
