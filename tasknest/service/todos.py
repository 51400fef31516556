from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from tasknest.logging import get_logger
from tasknest.service.errors import (
    BadRequestError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)
from tasknest.storage.models import Todo, TodoColor, TodoPage, TodoStatistics

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 100
CONTENT_MAX_LENGTH = 1000
KEYWORD_MAX_LENGTH = 100
PAGE_SIZE_MIN = 10
PAGE_SIZE_MAX = 50
STATUSES = ("all", "complete", "incomplete")
SEARCH_TYPES = ("title", "content")


class TodoStore(Protocol):
    def create_todo(
        self,
        user_no: int,
        title: str,
        *,
        content: str = "",
        color: str = "",
        due_at: Optional[date] = None,
        sequence: Optional[int] = None,
    ) -> Todo: ...

    def get_todo(self, todo_id: str) -> Optional[Todo]: ...

    def update_todo(
        self, todo_id: str, *, title: str, content: str, color: str, due_at: Optional[date]
    ) -> int: ...

    def patch_todo(self, todo_id: str, fields: Dict[str, Any]) -> int: ...

    def delete_todo(self, todo_id: str) -> int: ...

    def list_todos(
        self,
        user_no: int,
        *,
        offset: int = 0,
        limit: int = 10,
        status: str = "all",
        search_type: Optional[str] = None,
        keyword: Optional[str] = None,
    ) -> Tuple[List[Todo], int]: ...

    def todo_statistics(self, user_no: int, today_start: datetime) -> TodoStatistics: ...


def _check_fields(title: str, content: str, color: str) -> None:
    if not title or len(title) > TITLE_MAX_LENGTH:
        raise BadRequestError(
            "title must be between 1 and 100 characters", detail={"field": "title"}
        )
    if len(content) > CONTENT_MAX_LENGTH:
        raise BadRequestError(
            "content must be at most 1000 characters", detail={"field": "content"}
        )
    if color and color not in {c.value for c in TodoColor}:
        raise BadRequestError("unsupported color", detail={"field": "color"})


class TodoService:
    def __init__(self, store: TodoStore) -> None:
        self.store = store

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _owned(self, user_no: int, todo_id: str) -> Todo:
        todo = self.store.get_todo(todo_id)
        if todo is None:
            raise NotFoundError("todo not found")
        if todo.user_no != user_no:
            logger.warning("todo_access_forbidden", user_no=user_no, todo_id=todo_id)
            raise ForbiddenError("todo belongs to another user")
        return todo

    def list_todos(
        self,
        user_no: int,
        *,
        page: int = 1,
        size: int = PAGE_SIZE_MIN,
        status: str = "all",
        search_type: Optional[str] = None,
        keyword: Optional[str] = None,
    ) -> TodoPage:
        """Return one page of the caller's todos, ordered by sequence.

        ``total_count`` counts every todo matching the status and keyword
        filters, not just the returned page.
        """

        if page < 1:
            raise BadRequestError("page must be at least 1", detail={"field": "page"})
        if not PAGE_SIZE_MIN <= size <= PAGE_SIZE_MAX:
            raise BadRequestError("size must be between 10 and 50", detail={"field": "size"})
        if status not in STATUSES:
            raise BadRequestError("unsupported status", detail={"field": "status"})
        if search_type is not None and search_type not in SEARCH_TYPES:
            raise BadRequestError("unsupported search type", detail={"field": "search_type"})
        if keyword is not None and len(keyword) > KEYWORD_MAX_LENGTH:
            raise BadRequestError(
                "keyword must be at most 100 characters", detail={"field": "keyword"}
            )
        items, total = self.store.list_todos(
            user_no,
            offset=(page - 1) * size,
            limit=size,
            status=status,
            search_type=search_type,
            keyword=keyword or None,
        )
        return TodoPage(page=page, size=size, total_count=total, items=items)

    def get_todo(self, user_no: int, todo_id: str) -> Todo:
        return self._owned(user_no, todo_id)

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
        _check_fields(title, content, color)
        todo = self.store.create_todo(
            user_no, title, content=content, color=color, due_at=due_at, sequence=sequence
        )
        logger.info("todo_created", user_no=user_no, todo_id=todo.todo_id)
        return todo

    def update_todo(
        self,
        user_no: int,
        todo_id: str,
        *,
        title: str,
        content: str = "",
        color: str = "",
        due_at: Optional[date] = None,
    ) -> None:
        _check_fields(title, content, color)
        self._owned(user_no, todo_id)
        updated = self.store.update_todo(
            todo_id, title=title, content=content, color=color, due_at=due_at
        )
        if updated == 0:
            raise InternalError("todo update failed")

    def patch_todo(
        self,
        user_no: int,
        todo_id: str,
        *,
        sequence: Optional[int] = None,
        completed: Optional[bool] = None,
    ) -> None:
        self._owned(user_no, todo_id)
        fields: Dict[str, Any] = {}
        if sequence is not None:
            fields["sequence"] = sequence
        if completed is not None:
            fields["completed_at"] = self._now() if completed else None
        if not fields:
            raise BadRequestError("nothing to update")
        if self.store.patch_todo(todo_id, fields) == 0:
            raise InternalError("todo update failed")

    def delete_todo(self, user_no: int, todo_id: str) -> None:
        self._owned(user_no, todo_id)
        if self.store.delete_todo(todo_id) == 0:
            raise InternalError("todo deletion failed")
        logger.info("todo_deleted", user_no=user_no, todo_id=todo_id)

    def get_statistics(self, user_no: int) -> TodoStatistics:
        now = self._now()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.store.todo_statistics(user_no, today_start)
