from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response

from tasknest.api.schemas import (
    AccessTokenResponse,
    EmailCodeRequest,
    EmailExistResponse,
    EmailRequest,
    Envelope,
    LoginRequest,
    RefreshTokenDetail,
    ResetPasswordRequest,
    SignupRequest,
    TodoCreateRequest,
    TodoCreateResponse,
    TodoDetailResponse,
    TodoListResponse,
    TodoPatchRequest,
    TodoStatisticsResponse,
    TodoWriteRequest,
    UserChangePasswordRequest,
    UserDetailResponse,
    UserPatchRequest,
)
from tasknest.logging import get_logger
from tasknest.service.client_os import detect_client_os
from tasknest.service.errors import BadRequestError, RateLimitedError
from tasknest.service.runtime import (
    RATE_LIMIT_KEY_PREFIX,
    Runtime,
    check_rate_limit,
    get_runtime,
)
from tasknest.storage.models import Role

logger = get_logger(__name__)

router = APIRouter()
auth_router = APIRouter(prefix="/auth")


@dataclass
class AuthContext:
    user_no: int
    email: str
    role: Role


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _ok(data=None) -> Envelope:
    return Envelope(status="ok", data=data)


def client_ip(request: Request, *, trust_forwarded_for: bool = True) -> str:
    """First X-Forwarded-For hop when trusted, else the socket peer."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else "unknown"


async def enforce_rate_limit(request: Request) -> None:
    runtime = get_runtime()
    settings = runtime.settings
    ip = client_ip(request, trust_forwarded_for=settings.trust_forwarded_for)
    allowed = await check_rate_limit(
        runtime,
        f"{RATE_LIMIT_KEY_PREFIX}{ip}",
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
    )
    if not allowed:
        raise RateLimitedError("too many requests")


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _http_error("unauthorized", "authentication required", status_code=401)
    claims = get_runtime().issuer.validate(token.strip())
    if claims is None:
        raise _http_error("unauthorized", "invalid access token", status_code=401)
    return AuthContext(user_no=claims.user_no, email=claims.email, role=claims.role)


def _refresh_cookie(runtime: Runtime, request: Request) -> str:
    value = request.cookies.get(runtime.settings.refresh_token_cookie_name)
    if not value or not value.strip():
        raise BadRequestError("refresh token cookie missing")
    return value.strip()


def _set_refresh_cookie(runtime: Runtime, response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=runtime.settings.refresh_token_cookie_name,
        value=refresh_token,
        max_age=runtime.auth_config.refresh_token_ttl_minutes * 60,
        path="/",
        httponly=True,
        secure=True,
        samesite="none",
    )


def _clear_refresh_cookie(runtime: Runtime, response: Response) -> None:
    response.delete_cookie(
        key=runtime.settings.refresh_token_cookie_name,
        path="/",
        httponly=True,
        secure=True,
        samesite="none",
    )


# auth
@auth_router.post("/email/exist", response_model=Envelope)
async def email_exists(body: EmailRequest):
    exists = await get_runtime().auth.exists_by_email(body.email)
    return _ok(EmailExistResponse(exists=exists).model_dump())


@auth_router.post("/login", response_model=Envelope)
async def login(body: LoginRequest, request: Request, response: Response):
    runtime = get_runtime()
    pair = await runtime.auth.login(
        body.email, body.password, detect_client_os(request.headers)
    )
    _set_refresh_cookie(runtime, response, pair.refresh_token)
    return _ok(
        AccessTokenResponse(
            access_token=pair.access_token, refresh_token=pair.refresh_token
        ).model_dump()
    )


@auth_router.post("/signup/code", status_code=204, response_class=Response)
async def send_signup_code(body: EmailRequest):
    await get_runtime().auth.send_signup_code(body.email)
    return Response(status_code=204)


@auth_router.post("/signup/verify", status_code=204, response_class=Response)
async def verify_signup_code(body: EmailCodeRequest):
    await get_runtime().auth.verify_signup_code(body.email, body.code)
    return Response(status_code=204)


@auth_router.post("/signup", status_code=204, response_class=Response)
async def signup(body: SignupRequest):
    await get_runtime().auth.signup(body.email, body.password, body.user_name, body.code)
    return Response(status_code=204)


@auth_router.post("/reset-password/code", status_code=204, response_class=Response)
async def send_reset_password_code(body: EmailRequest):
    await get_runtime().auth.send_reset_password_code(body.email)
    return Response(status_code=204)


@auth_router.post("/reset-password/verify", status_code=204, response_class=Response)
async def verify_reset_password_code(body: EmailCodeRequest):
    await get_runtime().auth.verify_reset_password_code(body.email, body.code)
    return Response(status_code=204)


@auth_router.post("/reset-password", status_code=204, response_class=Response)
async def reset_password(body: ResetPasswordRequest):
    await get_runtime().auth.reset_password(body.email, body.password, body.code)
    return Response(status_code=204)


# tokens
@router.get("/tokens", response_model=Envelope)
async def list_tokens(principal: AuthContext = Depends(get_user)):
    summaries = await get_runtime().auth.get_tokens(principal.user_no)
    return _ok(
        [
            RefreshTokenDetail(
                refresh_token=s.refresh_token,
                client_os=s.client_os,
                created_at=s.created_at,
            ).model_dump(mode="json")
            for s in summaries
        ]
    )


@router.post(
    "/tokens/refresh",
    response_model=Envelope,
    dependencies=[Depends(enforce_rate_limit)],
)
async def refresh_access_token(request: Request):
    runtime = get_runtime()
    pair = await runtime.auth.refresh_access_token(_refresh_cookie(runtime, request))
    return _ok(AccessTokenResponse(access_token=pair.access_token).model_dump())


@router.delete("/tokens/current", status_code=204, response_class=Response)
async def delete_current_token(
    request: Request, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    await runtime.auth.delete_current_token(
        principal.user_no, _refresh_cookie(runtime, request)
    )
    response = Response(status_code=204)
    _clear_refresh_cookie(runtime, response)
    return response


@router.delete("/tokens/{refresh_token}", status_code=204, response_class=Response)
async def delete_token(refresh_token: str, principal: AuthContext = Depends(get_user)):
    await get_runtime().auth.delete_token(principal.user_no, refresh_token)
    return Response(status_code=204)


# user
@router.get("/user", response_model=Envelope)
async def get_user_detail(principal: AuthContext = Depends(get_user)):
    detail = get_runtime().users.get_user_detail(principal.user_no)
    return _ok(
        UserDetailResponse(
            email=detail.email, user_name=detail.user_name, created_at=detail.created_at
        ).model_dump(mode="json")
    )


@router.patch("/user", status_code=204, response_class=Response)
async def patch_user(body: UserPatchRequest, principal: AuthContext = Depends(get_user)):
    get_runtime().users.patch_user(principal.user_no, body.user_name)
    return Response(status_code=204)


@router.patch(
    "/user/change-password",
    status_code=204,
    response_class=Response,
    dependencies=[Depends(enforce_rate_limit)],
)
async def change_password(
    body: UserChangePasswordRequest, principal: AuthContext = Depends(get_user)
):
    get_runtime().users.change_password(principal.user_no, body.password, body.new_password)
    return Response(status_code=204)


# todos
@router.get("/todos", response_model=Envelope)
async def list_todos(
    page: int = Query(1),
    size: int = Query(10),
    status: str = Query("all"),
    search_type: Optional[str] = Query(None),
    keyword: Optional[str] = Query(None),
    principal: AuthContext = Depends(get_user),
):
    result = get_runtime().todos.list_todos(
        principal.user_no,
        page=page,
        size=size,
        status=status,
        search_type=search_type,
        keyword=keyword,
    )
    return _ok(
        TodoListResponse(
            page=result.page,
            size=result.size,
            total_count=result.total_count,
            list=[
                TodoDetailResponse.model_validate(todo, from_attributes=True)
                for todo in result.items
            ],
        ).model_dump(mode="json")
    )


@router.get("/todos/statistics", response_model=Envelope)
async def todo_statistics(principal: AuthContext = Depends(get_user)):
    stats = get_runtime().todos.get_statistics(principal.user_no)
    return _ok(
        TodoStatisticsResponse(
            total_count=stats.total_count,
            completed_count=stats.completed_count,
            today_completed_count=stats.today_completed_count,
        ).model_dump()
    )


@router.get("/todos/{todo_id}", response_model=Envelope)
async def get_todo(todo_id: str, principal: AuthContext = Depends(get_user)):
    todo = get_runtime().todos.get_todo(principal.user_no, todo_id)
    return _ok(
        TodoDetailResponse.model_validate(todo, from_attributes=True).model_dump(mode="json")
    )


@router.post(
    "/todos",
    status_code=201,
    response_model=Envelope,
    dependencies=[Depends(enforce_rate_limit)],
)
async def create_todo(body: TodoCreateRequest, principal: AuthContext = Depends(get_user)):
    todo = get_runtime().todos.create_todo(
        principal.user_no,
        body.title,
        content=body.content,
        color=body.color,
        due_at=body.due_at,
        sequence=body.sequence,
    )
    return _ok(TodoCreateResponse(todo_id=todo.todo_id).model_dump())


@router.put("/todos/{todo_id}", status_code=204, response_class=Response)
async def update_todo(
    todo_id: str, body: TodoWriteRequest, principal: AuthContext = Depends(get_user)
):
    get_runtime().todos.update_todo(
        principal.user_no,
        todo_id,
        title=body.title,
        content=body.content,
        color=body.color,
        due_at=body.due_at,
    )
    return Response(status_code=204)


@router.patch("/todos/{todo_id}", status_code=204, response_class=Response)
async def patch_todo(
    todo_id: str, body: TodoPatchRequest, principal: AuthContext = Depends(get_user)
):
    get_runtime().todos.patch_todo(
        principal.user_no, todo_id, sequence=body.sequence, completed=body.completed
    )
    return Response(status_code=204)


@router.delete("/todos/{todo_id}", status_code=204, response_class=Response)
async def delete_todo(todo_id: str, principal: AuthContext = Depends(get_user)):
    get_runtime().todos.delete_todo(principal.user_no, todo_id)
    return Response(status_code=204)


router.include_router(auth_router, dependencies=[Depends(enforce_rate_limit)])
