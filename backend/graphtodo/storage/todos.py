"""Todo 仓储：读取与整表替换。"""

from __future__ import annotations

import logging
from typing import Sequence

from graphtodo.models import Todo
from graphtodo.storage.errors import GraphQueryError
from graphtodo.storage.executor import QueryExecutor

logger = logging.getLogger(__name__)

LIST_TODOS = """
MATCH (n:Todo)
RETURN n.guid AS guid, n.title AS title, n.completed AS completed
"""

COUNT_TODOS = "MATCH (n:Todo) RETURN count(n) AS total"

DELETE_ALL_TODOS = "MATCH (n:Todo) DELETE n"

MERGE_TODO = """
MERGE (n:Todo {guid: $id})
SET n.title = $title, n.completed = $completed
RETURN n.guid AS guid
"""


class TodoRepository:
    """每次调用都是一次新的往返，不在请求之间缓存任何状态。

    `replace_all` 是尽力而为的整表替换：先无条件删除，再逐条 merge。
    整批不是原子的，并发调用之间也没有互斥，后写者的删除与插入可能与
    其他调用交错。
    """

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    def list_todos(self) -> list[Todo]:
        """返回所有 Todo，顺序由后端决定。"""
        todos = []
        for row in self.executor.execute(LIST_TODOS):
            todo = Todo(
                id=row.get_str("guid"),
                title=row.get_str("title"),
                completed=row.get_bool("completed"),
            )
            logger.debug("Loaded todo %r", todo.id)
            todos.append(todo)
        return todos

    def count_todos(self) -> int:
        rows = self.executor.execute(COUNT_TODOS)
        return rows[0].get_int("total") if rows else 0

    def replace_all(self, todos: Sequence[Todo]) -> None:
        self.executor.execute(DELETE_ALL_TODOS)
        for todo in todos:
            logger.debug("Creating todo %r", todo.id)
            try:
                self._merge(todo)
            except (GraphQueryError, ValueError):
                logger.exception("Failed to upsert todo %r; continuing", todo.id)

    def _merge(self, todo: Todo) -> None:
        if todo.id is None or not todo.id.strip():
            raise ValueError(f"Todo id must not be blank: {todo!r}")
        self.executor.execute(
            MERGE_TODO,
            {"id": todo.id, "title": todo.title, "completed": todo.completed},
        )
