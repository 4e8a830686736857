"""FastAPI 入口，暴露 Todo 列表与令牌接口。"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, List

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from graphtodo.auth.oidc import get_current_profile, router as auth_router
from graphtodo.auth.token import TokenConfigError, generate_token
from graphtodo.config import Settings, get_settings
from graphtodo.models import Todo
from graphtodo.storage.errors import GraphStorageError, GraphUnavailableError
from graphtodo.storage.executor import GraphBackend, QueryExecutor, create_backend
from graphtodo.storage.todos import TodoRepository

logger = logging.getLogger(__name__)

DEFAULT_PAGE_NAME = "Todo"

app = FastAPI(title="Graph Todo API", version="0.1.0")
app.add_middleware(SessionMiddleware, secret_key=get_settings().session_secret)
app.include_router(auth_router)


@app.on_event("startup")
async def _validate_graph_mode_config() -> None:
    mode = get_settings().require_graph_mode()
    logger.info("Starting in %s graph mode", mode.value)


@app.on_event("shutdown")
async def _close_graph_backend() -> None:
    if get_graph_backend.cache_info().currsize:
        get_graph_backend().close()
        get_graph_backend.cache_clear()


class PublicPageView(BaseModel):
    name: str
    total: int


class PrivatePageView(BaseModel):
    profile: dict[str, Any]
    name: str
    total: int
    jwt_token: str


@lru_cache(maxsize=1)
def get_graph_backend() -> GraphBackend:
    """后端单例：持有 Kùzu Database 或 Neo4j 驱动连接池。"""
    return create_backend(get_settings())


def get_query_executor(
    backend: GraphBackend = Depends(get_graph_backend),
) -> QueryExecutor:
    return QueryExecutor(backend)


def get_todo_repository(
    executor: QueryExecutor = Depends(get_query_executor),
) -> TodoRepository:
    return TodoRepository(executor)


@app.exception_handler(GraphStorageError)
async def _graph_storage_error_handler(
    request: Request, exc: GraphStorageError
) -> JSONResponse:
    # 依赖构造后端时的失败也会到这里，不经过路由函数
    status_code = 503 if isinstance(exc, GraphUnavailableError) else 500
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def _issue_token(settings: Settings, profile: dict[str, Any]) -> str:
    try:
        return generate_token(
            settings.jwt_salt, profile, ttl_seconds=settings.jwt_ttl_seconds
        )
    except TokenConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/")
async def index_endpoint() -> RedirectResponse:
    return RedirectResponse(url="/public")


# 访问图存储的接口均为同步 def，由 FastAPI 线程池执行，避免阻塞事件循环
@app.get("/public", response_model=PublicPageView)
def public_page_endpoint(
    name: str = Query(DEFAULT_PAGE_NAME),
    repository: TodoRepository = Depends(get_todo_repository),
) -> PublicPageView:
    return PublicPageView(name=name, total=repository.count_todos())


@app.get("/private", response_model=PrivatePageView)
def private_page_endpoint(
    name: str = Query(DEFAULT_PAGE_NAME),
    profile: dict[str, Any] = Depends(get_current_profile),
    settings: Settings = Depends(get_settings),
    repository: TodoRepository = Depends(get_todo_repository),
) -> PrivatePageView:
    jwt_token = _issue_token(settings, profile)
    return PrivatePageView(
        profile=profile, name=name, total=repository.count_todos(), jwt_token=jwt_token
    )


@app.get("/generate-token", response_class=PlainTextResponse)
async def generate_token_endpoint(
    profile: dict[str, Any] = Depends(get_current_profile),
    settings: Settings = Depends(get_settings),
) -> str:
    return _issue_token(settings, profile)


@app.get(
    "/api/todos",
    response_model=List[Todo],
    dependencies=[Depends(get_current_profile)],
)
def list_todos_endpoint(
    repository: TodoRepository = Depends(get_todo_repository),
) -> List[Todo]:
    return repository.list_todos()


@app.put("/api/todos", dependencies=[Depends(get_current_profile)])
def replace_todos_endpoint(
    todos: List[Todo] = Body(...),
    repository: TodoRepository = Depends(get_todo_repository),
) -> dict[str, Any]:
    # 客户端每次 PUT 整个列表，服务端删除后重建
    repository.replace_all(todos)
    return {"ok": True}
