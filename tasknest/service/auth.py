from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Protocol

from tasknest.config import AuthConfig
from tasknest.logging import get_logger
from tasknest.service.email import EmailService
from tasknest.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ServiceError,
)
from tasknest.service.security import (
    Argon2PasswordHashing,
    CredentialVerifier,
    PasswordHashing,
)
from tasknest.service.tokens import TokenIssuer
from tasknest.service.verification import Purpose, VerificationCodeStore, generate_code
from tasknest.storage.errors import ConstraintViolation
from tasknest.storage.models import RefreshToken, Role, User

logger = get_logger(__name__)


class AuthStore(Protocol):
    def create_user(
        self, email: str, password: str, user_name: str, *, role: Role = Role.USER
    ) -> User: ...

    def get_user(self, user_no: int) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def update_password(self, user_no: int, password: str) -> int: ...

    def touch_last_login(self, user_no: int, at: Optional[datetime] = None) -> int: ...

    def create_token(
        self,
        user_no: int,
        refresh_token: str,
        client_os: str,
        access_token_expires_at: datetime,
        refresh_token_expires_at: datetime,
    ) -> RefreshToken: ...

    def get_token(self, refresh_token: str) -> Optional[RefreshToken]: ...

    def list_tokens(self, user_no: int) -> List[RefreshToken]: ...

    def update_access_expiry(
        self,
        token_id: int,
        new_expiry: datetime,
        expected_expiry: Optional[datetime] = None,
    ) -> int: ...

    def delete_token(self, refresh_token: str) -> int: ...


@dataclass
class TokenPair:
    access_token: str
    refresh_token: Optional[str] = None


@dataclass
class TokenSummary:
    refresh_token: str
    client_os: str
    created_at: datetime


class AuthService:
    """Login, email-code signup and password reset, and refresh-token sessions.

    Every failure surfaces as a single :class:`ServiceError` subclass. Errors
    raised by the store, the code cache or the mailer are logged and turned
    into :class:`InternalError` so callers never see backend exceptions.
    """

    def __init__(
        self,
        store: AuthStore,
        codes: VerificationCodeStore,
        issuer: TokenIssuer,
        email: EmailService,
        config: AuthConfig,
        *,
        hashing: Optional[PasswordHashing] = None,
    ) -> None:
        self.store = store
        self.codes = codes
        self.issuer = issuer
        self.email = email
        self.config = config
        self.hashing = hashing or Argon2PasswordHashing()
        self.verifier = CredentialVerifier(store, self.hashing)
        self._reissue_threshold = timedelta(minutes=config.reissue_threshold_minutes)

    def _now(self) -> datetime:
        """Timezone-aware UTC helper to avoid naive datetime usage."""

        return datetime.now(timezone.utc)

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except ServiceError:
            raise
        except Exception as exc:
            logger.error(
                "auth_collaborator_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise InternalError(f"{operation} failed") from exc

    async def exists_by_email(self, email: str) -> bool:
        with self._guard("email lookup"):
            return self.store.get_user_by_email(email) is not None

    async def login(self, email: str, password: str, client_os: str = "Unknown") -> TokenPair:
        with self._guard("login"):
            user = self.verifier.verify(email, password)
        if user is None:
            raise AuthenticationError("invalid credentials")

        now = self._now()
        access_token = self.issuer.issue_access_token(user.user_no, user.email, user.role)
        refresh_token = self.issuer.issue_refresh_identifier()
        try:
            self.store.create_token(
                user.user_no,
                refresh_token,
                client_os,
                now + self.issuer.access_token_lifetime,
                now + self.issuer.refresh_token_lifetime,
            )
        except Exception as exc:
            logger.error("token_create_failed", user_no=user.user_no, error=str(exc))
            raise InternalError("token creation failed") from exc
        try:
            self.store.touch_last_login(user.user_no, now)
        except Exception as exc:
            # Session is already stored; the stamp is best-effort
            logger.warning("last_login_update_failed", user_no=user.user_no, error=str(exc))

        logger.info("login_succeeded", user_no=user.user_no, client_os=client_os)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def _dispatch_code(self, email: str, purpose: Purpose) -> None:
        code = generate_code()
        try:
            sent = await asyncio.to_thread(
                self.email.send_verification_code, email, code, purpose
            )
        except Exception as exc:
            logger.error(
                "verification_email_failed", purpose=purpose.value, error=str(exc)
            )
            raise InternalError("email dispatch failed") from exc
        if not sent:
            raise InternalError("email dispatch failed")
        # Only a delivered code is stored
        with self._guard("verification code save"):
            await self.codes.save(purpose, email, code)

    async def _check_code(self, purpose: Purpose, email: str, code: str) -> None:
        with self._guard("verification code check"):
            valid = await self.codes.verify(purpose, email, code)
        if not valid:
            raise BadRequestError("invalid verification code")

    async def send_signup_code(self, email: str) -> None:
        if await self.exists_by_email(email):
            raise ConflictError("email already in use")
        await self._dispatch_code(email, Purpose.SIGNUP)

    async def verify_signup_code(self, email: str, code: str) -> None:
        await self._check_code(Purpose.SIGNUP, email, code)

    async def signup(self, email: str, password: str, user_name: str, code: str) -> User:
        if await self.exists_by_email(email):
            raise ConflictError("email already in use")
        await self._check_code(Purpose.SIGNUP, email, code)
        with self._guard("verification code delete"):
            await self.codes.delete(Purpose.SIGNUP, email)

        digest = self.hashing.hash(password)
        try:
            user = self.store.create_user(email, digest, user_name, role=Role.USER)
        except ConstraintViolation as exc:
            raise ConflictError("email already in use", detail=exc.detail) from exc
        except Exception as exc:
            logger.error("signup_insert_failed", error=str(exc))
            raise InternalError("signup failed") from exc
        logger.info("signup_completed", user_no=user.user_no)
        return user

    async def _require_account(self, email: str) -> User:
        with self._guard("email lookup"):
            user = self.store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("email not found")
        return user

    async def send_reset_password_code(self, email: str) -> None:
        await self._require_account(email)
        await self._dispatch_code(email, Purpose.RESET_PASSWORD)

    async def verify_reset_password_code(self, email: str, code: str) -> None:
        await self._check_code(Purpose.RESET_PASSWORD, email, code)

    async def reset_password(self, email: str, new_password: str, code: str) -> None:
        user = await self._require_account(email)
        await self._check_code(Purpose.RESET_PASSWORD, email, code)
        with self._guard("verification code delete"):
            await self.codes.delete(Purpose.RESET_PASSWORD, email)

        digest = self.hashing.hash(new_password)
        with self._guard("password reset"):
            updated = self.store.update_password(user.user_no, digest)
        if updated == 0:
            raise InternalError("password reset failed")
        logger.info("password_reset_completed", user_no=user.user_no)

    async def get_tokens(self, user_no: int) -> List[TokenSummary]:
        with self._guard("token listing"):
            records = self.store.list_tokens(user_no)
        return [
            TokenSummary(
                refresh_token=record.refresh_token,
                client_os=record.client_os,
                created_at=record.created_at,
            )
            for record in records
        ]

    async def refresh_access_token(self, refresh_token: str) -> TokenPair:
        with self._guard("token refresh"):
            record = self.store.get_token(refresh_token)
        if record is None:
            raise NotFoundError("invalid token")
        with self._guard("token refresh"):
            user = self.store.get_user(record.user_no)
        if user is None:
            raise NotFoundError("user not found")

        now = self._now()
        if now < record.access_token_expires_at - self._reissue_threshold:
            raise ConflictError("not yet eligible to renew")
        if now > record.refresh_token_expires_at:
            # Expired records stay until the owner deletes them
            raise BadRequestError("session expired")

        with self._guard("token refresh"):
            updated = self.store.update_access_expiry(
                record.id,
                now + self.issuer.access_token_lifetime,
                expected_expiry=record.access_token_expires_at,
            )
            if updated == 0 and self.store.get_token(refresh_token) is not None:
                # A concurrent refresh extended this session first
                raise ConflictError("not yet eligible to renew")
        if updated == 0:
            raise InternalError("token renewal failed")

        access_token = self.issuer.issue_access_token(user.user_no, user.email, user.role)
        logger.info("access_token_renewed", user_no=user.user_no, token_id=record.id)
        return TokenPair(access_token=access_token)

    async def delete_token(self, user_no: int, refresh_token: str) -> None:
        with self._guard("token delete"):
            record = self.store.get_token(refresh_token)
        if record is None:
            raise NotFoundError("token not found")
        if record.user_no != user_no:
            logger.warning(
                "token_delete_forbidden", user_no=user_no, owner_user_no=record.user_no
            )
            raise ForbiddenError("not allowed to delete this token")
        with self._guard("token delete"):
            deleted = self.store.delete_token(refresh_token)
        if deleted == 0:
            raise InternalError("token deletion failed")
        logger.info("token_deleted", user_no=user_no, token_id=record.id)

    async def delete_current_token(self, user_no: int, refresh_token: str) -> None:
        """Log out the calling session; an already missing record is fine."""

        with self._guard("logout"):
            record = self.store.get_token(refresh_token)
        if record is None:
            return
        if record.user_no != user_no:
            raise ForbiddenError("not allowed to delete this token")
        with self._guard("logout"):
            self.store.delete_token(refresh_token)
        logger.info("logout_completed", user_no=user_no, token_id=record.id)
