from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from tasknest.logging import get_logger
from tasknest.service.errors import BadRequestError, InternalError, NotFoundError
from tasknest.service.security import Argon2PasswordHashing, PasswordHashing
from tasknest.storage.models import User

logger = get_logger(__name__)

USER_NAME_MIN_LENGTH = 2
USER_NAME_MAX_LENGTH = 30


class UserStore(Protocol):
    def get_user(self, user_no: int) -> Optional[User]: ...

    def update_user_name(self, user_no: int, user_name: str) -> int: ...

    def update_password(self, user_no: int, password: str) -> int: ...


@dataclass
class UserDetail:
    email: str
    user_name: str
    created_at: datetime


class UserService:
    """Profile reads and edits for the signed-in user."""

    def __init__(self, store: UserStore, *, hashing: Optional[PasswordHashing] = None) -> None:
        self.store = store
        self.hashing = hashing or Argon2PasswordHashing()

    def _require_user(self, user_no: int) -> User:
        user = self.store.get_user(user_no)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def get_user_detail(self, user_no: int) -> UserDetail:
        user = self._require_user(user_no)
        return UserDetail(email=user.email, user_name=user.user_name, created_at=user.created_at)

    def patch_user(self, user_no: int, user_name: str) -> None:
        name = user_name.strip()
        if not USER_NAME_MIN_LENGTH <= len(name) <= USER_NAME_MAX_LENGTH:
            raise BadRequestError(
                "user name must be between 2 and 30 characters",
                detail={"field": "user_name"},
            )
        self._require_user(user_no)
        if self.store.update_user_name(user_no, name) == 0:
            raise InternalError("user update failed")
        logger.info("user_name_updated", user_no=user_no)

    def change_password(self, user_no: int, current_password: str, new_password: str) -> None:
        user = self._require_user(user_no)
        if not self.hashing.verify(current_password, user.password):
            logger.info("password_change_rejected", user_no=user_no)
            raise BadRequestError("current password does not match")
        if self.store.update_password(user_no, self.hashing.hash(new_password)) == 0:
            raise InternalError("password change failed")
        logger.info("password_changed", user_no=user_no)
