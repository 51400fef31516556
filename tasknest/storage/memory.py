from __future__ import annotations

import json
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from tasknest.logging import get_logger
from tasknest.storage.errors import ConstraintViolation
from tasknest.storage.models import (
    RefreshToken,
    Role,
    Todo,
    TodoStatistics,
    User,
    utcnow,
    uuid7,
)

_TODO_PATCH_FIELDS = {"sequence", "completed_at"}


class MemoryStore:
    """In-process store for users, refresh tokens and todos.

    Used by tests and local development. When ``fs_root`` is given the state is
    snapshotted to ``<fs_root>/state/memory_store.json`` after every write and
    reloaded on construction.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.tokens: Dict[int, RefreshToken] = {}
        self.todos: Dict[str, Todo] = {}
        self._user_seq = 0
        self._token_seq = 0
        # RLock so helpers can be called while a write already holds it
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    # users
    def create_user(
        self,
        email: str,
        password: str,
        user_name: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        with self._data_lock:
            if self._find_user_by_email(email) is not None:
                raise ConstraintViolation("email already exists", {"field": "email"})
            self._user_seq += 1
            user = User(
                user_no=self._user_seq,
                email=email,
                password=password,
                user_name=user_name,
                role=Role(role),
            )
            self.users[user.user_no] = user
            self._persist_state()
            return user

    def _find_user_by_email(self, email: str) -> Optional[User]:
        return next(
            (u for u in self.users.values() if u.email == email and not u.is_deleted),
            None,
        )

    def get_user(self, user_no: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_no)
            if user is None or user.is_deleted:
                return None
            return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return self._find_user_by_email(email)

    def update_password(self, user_no: int, password: str) -> int:
        with self._data_lock:
            user = self.get_user(user_no)
            if user is None:
                return 0
            user.password = password
            self._persist_state()
            return 1

    def update_user_name(self, user_no: int, user_name: str) -> int:
        with self._data_lock:
            user = self.get_user(user_no)
            if user is None:
                return 0
            user.user_name = user_name
            self._persist_state()
            return 1

    def touch_last_login(self, user_no: int, at: Optional[datetime] = None) -> int:
        with self._data_lock:
            user = self.get_user(user_no)
            if user is None:
                return 0
            user.last_login_at = at or utcnow()
            self._persist_state()
            return 1

    def soft_delete_user(self, user_no: int) -> int:
        with self._data_lock:
            user = self.get_user(user_no)
            if user is None:
                return 0
            user.deleted_at = utcnow()
            self._persist_state()
            return 1

    # refresh tokens
    def create_token(
        self,
        user_no: int,
        refresh_token: str,
        client_os: str,
        access_token_expires_at: datetime,
        refresh_token_expires_at: datetime,
    ) -> RefreshToken:
        with self._data_lock:
            if user_no not in self.users:
                raise ConstraintViolation("user does not exist", {"field": "user_no"})
            if any(t.refresh_token == refresh_token for t in self.tokens.values()):
                raise ConstraintViolation(
                    "refresh token already exists", {"field": "refresh_token"}
                )
            self._token_seq += 1
            record = RefreshToken(
                id=self._token_seq,
                user_no=user_no,
                refresh_token=refresh_token,
                client_os=client_os,
                access_token_expires_at=access_token_expires_at,
                refresh_token_expires_at=refresh_token_expires_at,
            )
            self.tokens[record.id] = record
            self._persist_state()
            return record

    def get_token(self, refresh_token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            return next(
                (t for t in self.tokens.values() if t.refresh_token == refresh_token),
                None,
            )

    def list_tokens(self, user_no: int) -> List[RefreshToken]:
        with self._data_lock:
            records = [t for t in self.tokens.values() if t.user_no == user_no]
        return sorted(records, key=lambda t: (t.created_at, t.id), reverse=True)

    def update_access_expiry(
        self,
        token_id: int,
        new_expiry: datetime,
        expected_expiry: Optional[datetime] = None,
    ) -> int:
        with self._data_lock:
            record = self.tokens.get(token_id)
            if record is None:
                return 0
            if (
                expected_expiry is not None
                and record.access_token_expires_at != expected_expiry
            ):
                return 0
            record.access_token_expires_at = new_expiry
            self._persist_state()
            return 1

    def delete_token(self, refresh_token: str) -> int:
        with self._data_lock:
            record = self.get_token(refresh_token)
            if record is None:
                return 0
            del self.tokens[record.id]
            self._persist_state()
            return 1

    # todos
    def create_todo(
        self,
        user_no: int,
        title: str,
        *,
        content: str = "",
        color: str = "",
        due_at: Optional[date] = None,
        sequence: Optional[int] = None,
    ) -> Todo:
        with self._data_lock:
            if user_no not in self.users:
                raise ConstraintViolation("user does not exist", {"field": "user_no"})
            if sequence is None:
                sequence = self._max_sequence(user_no) + 1
            todo = Todo(
                todo_id=str(uuid7()),
                user_no=user_no,
                title=title,
                content=content,
                color=color,
                sequence=sequence,
                due_at=due_at,
            )
            self.todos[todo.todo_id] = todo
            self._persist_state()
            return todo

    def _max_sequence(self, user_no: int) -> int:
        return max(
            (t.sequence for t in self.todos.values() if t.user_no == user_no),
            default=0,
        )

    def get_todo(self, todo_id: str) -> Optional[Todo]:
        with self._data_lock:
            return self.todos.get(todo_id)

    def update_todo(
        self,
        todo_id: str,
        *,
        title: str,
        content: str,
        color: str,
        due_at: Optional[date],
    ) -> int:
        with self._data_lock:
            todo = self.todos.get(todo_id)
            if todo is None:
                return 0
            todo.title = title
            todo.content = content
            todo.color = color
            todo.due_at = due_at
            todo.updated_at = utcnow()
            self._persist_state()
            return 1

    def patch_todo(self, todo_id: str, fields: Dict[str, Any]) -> int:
        unknown = set(fields) - _TODO_PATCH_FIELDS
        if unknown:
            raise ValueError(f"unsupported todo fields: {sorted(unknown)}")
        with self._data_lock:
            todo = self.todos.get(todo_id)
            if todo is None:
                return 0
            for key, value in fields.items():
                setattr(todo, key, value)
            todo.updated_at = utcnow()
            self._persist_state()
            return 1

    def delete_todo(self, todo_id: str) -> int:
        with self._data_lock:
            if self.todos.pop(todo_id, None) is None:
                return 0
            self._persist_state()
            return 1

    def list_todos(
        self,
        user_no: int,
        *,
        offset: int = 0,
        limit: int = 10,
        status: str = "all",
        search_type: Optional[str] = None,
        keyword: Optional[str] = None,
    ) -> Tuple[List[Todo], int]:
        with self._data_lock:
            matches = [t for t in self.todos.values() if t.user_no == user_no]
        if status == "complete":
            matches = [t for t in matches if t.is_completed]
        elif status == "incomplete":
            matches = [t for t in matches if not t.is_completed]
        if search_type in {"title", "content"} and keyword:
            needle = keyword.casefold()
            matches = [
                t for t in matches if needle in getattr(t, search_type).casefold()
            ]
        matches.sort(key=lambda t: (t.sequence, t.created_at))
        return matches[offset : offset + limit], len(matches)

    def todo_statistics(self, user_no: int, today_start: datetime) -> TodoStatistics:
        with self._data_lock:
            owned = [t for t in self.todos.values() if t.user_no == user_no]
        completed = [t for t in owned if t.completed_at is not None]
        return TodoStatistics(
            total_count=len(owned),
            completed_count=len(completed),
            today_completed_count=sum(
                1 for t in completed if t.completed_at >= today_start
            ),
        )

    # persistence
    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def _serialize_user(self, user: User) -> dict:
        return {
            "user_no": user.user_no,
            "email": user.email,
            "password": user.password,
            "user_name": user.user_name,
            "role": user.role.value,
            "created_at": self._serialize_datetime(user.created_at),
            "deleted_at": self._serialize_datetime(user.deleted_at),
            "last_login_at": self._serialize_datetime(user.last_login_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            user_no=int(data["user_no"]),
            email=data["email"],
            password=data["password"],
            user_name=data["user_name"],
            role=Role(data.get("role", Role.USER.value)),
            created_at=self._deserialize_datetime(data["created_at"]),
            deleted_at=self._deserialize_datetime(data.get("deleted_at")),
            last_login_at=self._deserialize_datetime(data.get("last_login_at")),
        )

    def _serialize_token(self, token: RefreshToken) -> dict:
        return {
            "id": token.id,
            "user_no": token.user_no,
            "refresh_token": token.refresh_token,
            "client_os": token.client_os,
            "access_token_expires_at": self._serialize_datetime(
                token.access_token_expires_at
            ),
            "refresh_token_expires_at": self._serialize_datetime(
                token.refresh_token_expires_at
            ),
            "created_at": self._serialize_datetime(token.created_at),
        }

    def _deserialize_token(self, data: dict) -> RefreshToken:
        return RefreshToken(
            id=int(data["id"]),
            user_no=int(data["user_no"]),
            refresh_token=data["refresh_token"],
            client_os=data.get("client_os", "Unknown"),
            access_token_expires_at=self._deserialize_datetime(
                data["access_token_expires_at"]
            ),
            refresh_token_expires_at=self._deserialize_datetime(
                data["refresh_token_expires_at"]
            ),
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _serialize_todo(self, todo: Todo) -> dict:
        return {
            "todo_id": todo.todo_id,
            "user_no": todo.user_no,
            "title": todo.title,
            "content": todo.content,
            "color": todo.color,
            "sequence": todo.sequence,
            "due_at": todo.due_at.isoformat() if todo.due_at else None,
            "completed_at": self._serialize_datetime(todo.completed_at),
            "created_at": self._serialize_datetime(todo.created_at),
            "updated_at": self._serialize_datetime(todo.updated_at),
        }

    def _deserialize_todo(self, data: dict) -> Todo:
        raw_due = data.get("due_at")
        return Todo(
            todo_id=data["todo_id"],
            user_no=int(data["user_no"]),
            title=data["title"],
            content=data.get("content", ""),
            color=data.get("color", ""),
            sequence=int(data.get("sequence", 0)),
            due_at=date.fromisoformat(raw_due) if raw_due else None,
            completed_at=self._deserialize_datetime(data.get("completed_at")),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at")),
        )

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        with self._data_lock:
            state = {
                "users": [self._serialize_user(u) for u in self.users.values()],
                "tokens": [self._serialize_token(t) for t in self.tokens.values()],
                "todos": [self._serialize_todo(t) for t in self.todos.values()],
                "user_seq": self._user_seq,
                "token_seq": self._token_seq,
            }
            path = self._state_path()
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(state))
            tmp_path.replace(path)

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {
            u["user_no"]: self._deserialize_user(u) for u in data.get("users", [])
        }
        self.tokens = {t["id"]: self._deserialize_token(t) for t in data.get("tokens", [])}
        self.todos = {
            t["todo_id"]: self._deserialize_todo(t) for t in data.get("todos", [])
        }
        self._user_seq = max(
            int(data.get("user_seq", 0)), max(self.users, default=0)
        )
        self._token_seq = max(
            int(data.get("token_seq", 0)), max(self.tokens, default=0)
        )
        self.logger.info(
            "memory_store_loaded",
            users=len(self.users),
            tokens=len(self.tokens),
            todos=len(self.todos),
        )
        return True
