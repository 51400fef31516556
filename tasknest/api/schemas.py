from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


EMAIL_MAX_LENGTH = 300
_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_PASSWORD_PATTERN = re.compile(
    r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d!@#$%^&*()_+\-=\[\]{};':\",.<>/?]{6,72}$"
)
_CODE_PATTERN = re.compile(r"^[0-9]{6}$")


def _validate_email(value: str) -> str:
    # Addresses are matched exactly as stored; no case folding
    if len(value) > EMAIL_MAX_LENGTH:
        raise ValueError("email address too long")
    local, sep, domain = value.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return value


def _validate_password_strength(value: str) -> str:
    """6-72 characters with at least one letter and one digit."""
    if not _PASSWORD_PATTERN.match(value):
        raise ValueError(
            "password must be 6-72 characters and contain at least one letter and one digit"
        )
    return value


def _validate_code(value: str) -> str:
    if not _CODE_PATTERN.match(value):
        raise ValueError("verification code must be 6 digits")
    return value


def _validate_user_name(value: str) -> str:
    value = value.strip()
    if not 2 <= len(value) <= 30:
        raise ValueError("user name must be between 2 and 30 characters")
    return value


class EmailRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class EmailCodeRequest(EmailRequest):
    code: str

    @field_validator("code")
    @classmethod
    def _check_code(cls, value: str) -> str:
        return _validate_code(value)


class LoginRequest(EmailRequest):
    # Existing passwords are only checked against their digest
    password: str = Field(..., min_length=1, max_length=72)


class SignupRequest(EmailCodeRequest):
    password: str
    user_name: str

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_strength(value)

    @field_validator("user_name")
    @classmethod
    def _check_user_name(cls, value: str) -> str:
        return _validate_user_name(value)


class ResetPasswordRequest(EmailCodeRequest):
    password: str

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class EmailExistResponse(BaseModel):
    exists: bool


class AccessTokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None


class RefreshTokenDetail(BaseModel):
    refresh_token: str
    client_os: str
    created_at: datetime


class UserDetailResponse(BaseModel):
    email: str
    user_name: str
    created_at: datetime


class UserPatchRequest(BaseModel):
    user_name: str

    @field_validator("user_name")
    @classmethod
    def _check_user_name(cls, value: str) -> str:
        return _validate_user_name(value)


class UserChangePasswordRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=72)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class TodoWriteRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    content: str = Field(default="", max_length=1000)
    color: Literal["", "red", "blue", "green", "yellow", "purple"] = ""
    due_at: Optional[date] = None


class TodoCreateRequest(TodoWriteRequest):
    sequence: Optional[int] = Field(default=None, ge=0)


class TodoPatchRequest(BaseModel):
    sequence: Optional[int] = Field(default=None, ge=0)
    completed: Optional[bool] = None


class TodoCreateResponse(BaseModel):
    todo_id: str


class TodoDetailResponse(BaseModel):
    todo_id: str
    title: str
    content: str
    color: str
    sequence: int
    due_at: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class TodoListResponse(BaseModel):
    page: int
    size: int
    total_count: int
    list: List[TodoDetailResponse]


class TodoStatisticsResponse(BaseModel):
    total_count: int
    completed_count: int
    today_completed_count: int

