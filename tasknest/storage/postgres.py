from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

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

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        user_no BIGSERIAL PRIMARY KEY,
        email VARCHAR(300) NOT NULL,
        password TEXT NOT NULL,
        user_name VARCHAR(30) NOT NULL,
        role VARCHAR(16) NOT NULL DEFAULT 'USER',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        deleted_at TIMESTAMPTZ,
        last_login_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_live_idx
        ON app_user (email) WHERE deleted_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        id BIGSERIAL PRIMARY KEY,
        user_no BIGINT NOT NULL REFERENCES app_user (user_no) ON DELETE CASCADE,
        refresh_token TEXT NOT NULL UNIQUE,
        client_os VARCHAR(64) NOT NULL,
        access_token_expires_at TIMESTAMPTZ NOT NULL,
        refresh_token_expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS refresh_token_user_idx
        ON refresh_token (user_no, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS todo (
        todo_id UUID PRIMARY KEY,
        user_no BIGINT NOT NULL REFERENCES app_user (user_no) ON DELETE CASCADE,
        title VARCHAR(100) NOT NULL,
        content VARCHAR(1000) NOT NULL DEFAULT '',
        color VARCHAR(16) NOT NULL DEFAULT '',
        sequence INTEGER NOT NULL DEFAULT 0,
        due_at DATE,
        completed_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS todo_user_sequence_idx ON todo (user_no, sequence)
    """,
)

_TODO_PATCH_COLUMNS = {"sequence", "completed_at"}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresStore:
    """Postgres-backed store for users, refresh tokens and todos."""

    def __init__(self, dsn: str, *, ensure_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if ensure_schema:
            self._ensure_schema()
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the tables and indexes if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

    def _verify_required_schema(self) -> None:
        required_tables = ["app_user", "refresh_token", "todo"]

        with self._connect() as conn:
            missing_tables = []
            for table in required_tables:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # users
    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            user_no=int(row["user_no"]),
            email=row["email"],
            password=row["password"],
            user_name=row["user_name"],
            role=Role(row.get("role") or Role.USER.value),
            created_at=row.get("created_at") or utcnow(),
            deleted_at=row.get("deleted_at"),
            last_login_at=row.get("last_login_at"),
        )

    def create_user(
        self,
        email: str,
        password: str,
        user_name: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (email, password, user_name, role)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (email, password, user_name, Role(role).value),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._user_from_row(row)

    def get_user(self, user_no: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE user_no = %s AND deleted_at IS NULL",
                (user_no,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s AND deleted_at IS NULL",
                (email,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def update_password(self, user_no: int, password: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE app_user SET password = %s WHERE user_no = %s AND deleted_at IS NULL",
                (password, user_no),
            )
            return result.rowcount

    def update_user_name(self, user_no: int, user_name: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE app_user SET user_name = %s WHERE user_no = %s AND deleted_at IS NULL",
                (user_name, user_no),
            )
            return result.rowcount

    def touch_last_login(self, user_no: int, at: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE app_user SET last_login_at = %s WHERE user_no = %s AND deleted_at IS NULL",
                (at or utcnow(), user_no),
            )
            return result.rowcount

    def soft_delete_user(self, user_no: int) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE app_user SET deleted_at = now() WHERE user_no = %s AND deleted_at IS NULL",
                (user_no,),
            )
            return result.rowcount

    # refresh tokens
    @staticmethod
    def _token_from_row(row: Dict[str, Any]) -> RefreshToken:
        return RefreshToken(
            id=int(row["id"]),
            user_no=int(row["user_no"]),
            refresh_token=row["refresh_token"],
            client_os=row["client_os"],
            access_token_expires_at=row["access_token_expires_at"],
            refresh_token_expires_at=row["refresh_token_expires_at"],
            created_at=row.get("created_at") or utcnow(),
        )

    def create_token(
        self,
        user_no: int,
        refresh_token: str,
        client_os: str,
        access_token_expires_at: datetime,
        refresh_token_expires_at: datetime,
    ) -> RefreshToken:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO refresh_token (
                        user_no, refresh_token, client_os,
                        access_token_expires_at, refresh_token_expires_at
                    )
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        user_no,
                        refresh_token,
                        client_os,
                        access_token_expires_at,
                        refresh_token_expires_at,
                    ),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"field": "user_no"})
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "refresh token already exists", {"field": "refresh_token"}
            )
        return self._token_from_row(row)

    def get_token(self, refresh_token: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE refresh_token = %s",
                (refresh_token,),
            ).fetchone()
        if not row:
            return None
        return self._token_from_row(row)

    def list_tokens(self, user_no: int) -> List[RefreshToken]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM refresh_token
                WHERE user_no = %s
                ORDER BY created_at DESC, id DESC
                """,
                (user_no,),
            ).fetchall()
        return [self._token_from_row(row) for row in rows]

    def update_access_expiry(
        self,
        token_id: int,
        new_expiry: datetime,
        expected_expiry: Optional[datetime] = None,
    ) -> int:
        with self._connect() as conn:
            if expected_expiry is None:
                result = conn.execute(
                    "UPDATE refresh_token SET access_token_expires_at = %s WHERE id = %s",
                    (new_expiry, token_id),
                )
            else:
                result = conn.execute(
                    """
                    UPDATE refresh_token SET access_token_expires_at = %s
                    WHERE id = %s AND access_token_expires_at = %s
                    """,
                    (new_expiry, token_id, expected_expiry),
                )
            return result.rowcount

    def delete_token(self, refresh_token: str) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_token WHERE refresh_token = %s", (refresh_token,)
            )
            return result.rowcount

    # todos
    @staticmethod
    def _todo_from_row(row: Dict[str, Any]) -> Todo:
        due_at = row.get("due_at")
        if isinstance(due_at, datetime):
            due_at = due_at.date()
        return Todo(
            todo_id=str(row["todo_id"]),
            user_no=int(row["user_no"]),
            title=row["title"],
            content=row.get("content") or "",
            color=row.get("color") or "",
            sequence=int(row.get("sequence") or 0),
            due_at=due_at,
            completed_at=row.get("completed_at"),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at"),
        )

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
        todo_id = str(uuid7())
        try:
            with self._connect() as conn:
                if sequence is None:
                    # Serialize sequence assignment per user
                    conn.execute(
                        "SELECT user_no FROM app_user WHERE user_no = %s FOR UPDATE",
                        (user_no,),
                    )
                    seq_row = conn.execute(
                        "SELECT COALESCE(MAX(sequence), 0) AS max_seq FROM todo WHERE user_no = %s",
                        (user_no,),
                    ).fetchone()
                    sequence = int(seq_row["max_seq"]) + 1
                row = conn.execute(
                    """
                    INSERT INTO todo (todo_id, user_no, title, content, color, sequence, due_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (todo_id, user_no, title, content, color, sequence, due_at),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"field": "user_no"})
        return self._todo_from_row(row)

    def get_todo(self, todo_id: str) -> Optional[Todo]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM todo WHERE todo_id = %s", (todo_id,)
            ).fetchone()
        if not row:
            return None
        return self._todo_from_row(row)

    def update_todo(
        self,
        todo_id: str,
        *,
        title: str,
        content: str,
        color: str,
        due_at: Optional[date],
    ) -> int:
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE todo
                SET title = %s, content = %s, color = %s, due_at = %s, updated_at = now()
                WHERE todo_id = %s
                """,
                (title, content, color, due_at, todo_id),
            )
            return result.rowcount

    def patch_todo(self, todo_id: str, fields: Dict[str, Any]) -> int:
        unknown = set(fields) - _TODO_PATCH_COLUMNS
        if unknown:
            raise ValueError(f"unsupported todo fields: {sorted(unknown)}")
        if not fields:
            return 0
        # Column names come from the fixed allow-list above
        assignments = ", ".join(f"{column} = %s" for column in fields)
        params: List[Any] = list(fields.values())
        params.append(todo_id)
        with self._connect() as conn:
            result = conn.execute(
                f"UPDATE todo SET {assignments}, updated_at = now() WHERE todo_id = %s",
                params,
            )
            return result.rowcount

    def delete_todo(self, todo_id: str) -> int:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM todo WHERE todo_id = %s", (todo_id,))
            return result.rowcount

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
        clauses = ["user_no = %s"]
        params: List[Any] = [user_no]
        if status == "complete":
            clauses.append("completed_at IS NOT NULL")
        elif status == "incomplete":
            clauses.append("completed_at IS NULL")
        if search_type == "title" and keyword:
            clauses.append("title ILIKE %s")
            params.append(f"%{_escape_like(keyword)}%")
        elif search_type == "content" and keyword:
            clauses.append("content ILIKE %s")
            params.append(f"%{_escape_like(keyword)}%")
        where = " AND ".join(clauses)
        with self._connect() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) AS total FROM todo WHERE {where}", params
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM todo WHERE {where}
                ORDER BY sequence ASC, created_at ASC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, offset],
            ).fetchall()
        total = int(count_row["total"]) if count_row else 0
        return [self._todo_from_row(row) for row in rows], total

    def todo_statistics(self, user_no: int, today_start: datetime) -> TodoStatistics:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_count,
                    COUNT(completed_at) AS completed_count,
                    COUNT(*) FILTER (WHERE completed_at >= %s) AS today_completed_count
                FROM todo
                WHERE user_no = %s
                """,
                (today_start, user_no),
            ).fetchone()
        return TodoStatistics(
            total_count=int(row["total_count"]),
            completed_count=int(row["completed_count"]),
            today_completed_count=int(row["today_completed_count"]),
        )
