from __future__ import annotations

import secrets
from enum import Enum
from typing import Optional, Protocol

from tasknest.config import AuthConfig
from tasknest.logging import get_logger

logger = get_logger(__name__)


class CodeCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> int: ...


class Purpose(str, Enum):
    SIGNUP = "signup"
    RESET_PASSWORD = "resetPassword"

    @property
    def prefix(self) -> str:
        return f"{self.value}:"


def generate_code() -> str:
    """Six decimal digits, uniform over 000000-999999."""

    return f"{secrets.randbelow(1_000_000):06d}"


class VerificationCodeStore:
    """Short-lived email verification codes, one live code per purpose and email."""

    def __init__(self, cache: CodeCache, config: AuthConfig) -> None:
        self.cache = cache
        self._ttl = {
            Purpose.SIGNUP: config.signup_code_ttl_seconds,
            Purpose.RESET_PASSWORD: config.reset_password_code_ttl_seconds,
        }

    @staticmethod
    def _key(purpose: Purpose, email: str) -> str:
        return purpose.prefix + email

    async def save(self, purpose: Purpose, email: str, code: str) -> None:
        await self.cache.set(self._key(purpose, email), code, self._ttl[purpose])
        logger.info("verification_code_saved", purpose=purpose.value, email=email)

    async def verify(self, purpose: Purpose, email: str, code: str) -> bool:
        stored = await self.cache.get(self._key(purpose, email))
        if stored is None:
            return False
        return secrets.compare_digest(stored.encode(), code.encode())

    async def delete(self, purpose: Purpose, email: str) -> None:
        await self.cache.delete(self._key(purpose, email))
