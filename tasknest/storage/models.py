from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid7() -> uuid.UUID:
    """Time-ordered UUID (version 7): 48-bit unix milliseconds, then random bits."""
    ts_ms = int(time.time() * 1000) & ((1 << 48) - 1)
    value = (ts_ms << 80) | int.from_bytes(os.urandom(10), "big")
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return uuid.UUID(int=value)


class Role(str, Enum):
    """Account roles; persisted and embedded in access tokens as-is."""

    USER = "USER"
    ADMIN = "ADMIN"


class TodoColor(str, Enum):
    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    PURPLE = "purple"


@dataclass
class User:
    user_no: int
    email: str
    password: str  # argon2 digest, never the plain value
    user_name: str
    role: Role = Role.USER
    created_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class RefreshToken:
    """One login session; the token value is both identifier and secret."""

    id: int
    user_no: int
    refresh_token: str
    client_os: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Todo:
    todo_id: str
    user_no: int
    title: str
    content: str = ""
    color: str = ""
    sequence: int = 0
    due_at: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class TodoPage:
    page: int
    size: int
    total_count: int
    items: list[Todo]


@dataclass
class TodoStatistics:
    total_count: int
    completed_count: int
    today_completed_count: int
