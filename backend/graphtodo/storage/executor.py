"""图查询执行器：在嵌入式 Kùzu 与远程 Neo4j 之间切换，统一结果行形状。"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, Mapping

import kuzu
from neo4j import GraphDatabase
from neo4j.exceptions import (
    AuthError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)

from graphtodo.config import GraphMode, Settings
from graphtodo.storage.errors import (
    GraphQueryError,
    GraphUnavailableError,
    RowTypeError,
)

logger = logging.getLogger(__name__)

TODO_SCHEMA = """
CREATE NODE TABLE IF NOT EXISTS Todo(
    guid STRING,
    title STRING,
    completed BOOLEAN,
    PRIMARY KEY (guid)
);
"""


class ResultRow(Mapping[str, Any]):
    """只读结果行：列别名 -> 标量，按名称和期望类型取值。"""

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any]):
        self._values = dict(values)

    def __getitem__(self, column: str) -> Any:
        return self._values[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ResultRow({self._values!r})"

    def _typed(self, column: str, expected: type) -> Any:
        value = self._values[column]
        # bool 是 int 的子类，这里不允许互相冒充
        if isinstance(value, bool) and expected is not bool:
            raise RowTypeError(column, expected, value)
        if not isinstance(value, expected):
            raise RowTypeError(column, expected, value)
        return value

    def get_str(self, column: str) -> str:
        return self._typed(column, str)

    def get_bool(self, column: str) -> bool:
        return self._typed(column, bool)

    def get_int(self, column: str) -> int:
        return self._typed(column, int)


class GraphBackend(ABC):
    """后端能力：执行一条参数化查询并返回物化后的行。"""

    mode: GraphMode

    @abstractmethod
    def run_query(
        self, query: str, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        ...

    def close(self) -> None:
        return None


class EmbeddedGraphBackend(GraphBackend):
    """进程内 Kùzu 引擎。Database 全局唯一，每次查询使用独立 Connection。"""

    mode = GraphMode.EMBEDDED

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db = kuzu.Database(str(self.db_path))
        except (OSError, RuntimeError) as exc:
            raise GraphUnavailableError(
                f"Failed to open embedded graph at {self.db_path}: {exc}"
            ) from exc
        logger.info("Opened embedded graph database at %s", self.db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.run_query(TODO_SCHEMA, {})

    def run_query(
        self, query: str, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        try:
            conn = kuzu.Connection(self.db)
        except RuntimeError as exc:
            raise GraphUnavailableError(f"Embedded connection failed: {exc}") from exc
        try:
            result = conn.execute(query, dict(params))
            columns = result.get_column_names()
            rows: list[dict[str, Any]] = []
            while result.has_next():
                rows.append(dict(zip(columns, result.get_next())))
            return rows
        except RuntimeError as exc:
            raise GraphQueryError(f"Embedded query failed: {exc}") from exc
        finally:
            conn.close()

    def close(self) -> None:
        self.db.close()
        logger.info("Closed embedded graph database at %s", self.db_path)


class RemoteGraphBackend(GraphBackend):
    """远程 Neo4j 服务。驱动自带连接池，每次查询借出一个 session。"""

    mode = GraphMode.REMOTE

    def __init__(
        self,
        uri: str,
        *,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ):
        auth = (user, password) if user and password else None
        self.uri = uri
        self.database = database
        self.driver = GraphDatabase.driver(uri, auth=auth)
        logger.info("Created remote graph driver for %s", uri)

    def run_query(
        self, query: str, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(query, dict(params))
                return [record.data() for record in result]
        except (ServiceUnavailable, SessionExpired, AuthError) as exc:
            raise GraphUnavailableError(
                f"Remote graph {self.uri} unavailable: {exc}"
            ) from exc
        except (Neo4jError, DriverError) as exc:
            raise GraphQueryError(f"Remote query failed: {exc}") from exc

    def close(self) -> None:
        self.driver.close()
        logger.info("Closed remote graph driver for %s", self.uri)


def create_backend(settings: Settings) -> GraphBackend:
    """只构造所配置模式对应的后端，另一种连接永远不会被创建。"""
    mode = settings.require_graph_mode()
    logger.info("Graph backend mode: %s", mode.value)
    if mode == GraphMode.EMBEDDED:
        return EmbeddedGraphBackend(settings.kuzu_db_path)
    else:
        return RemoteGraphBackend(
            settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
        )


class QueryExecutor:
    """对上层暴露的唯一查询入口；参数始终按名称绑定，不做字符串拼接。"""

    def __init__(self, backend: GraphBackend):
        self.backend = backend

    @property
    def mode(self) -> GraphMode:
        return self.backend.mode

    def execute(
        self, query: str, params: Mapping[str, Any] | None = None
    ) -> list[ResultRow]:
        # 只记录参数名，参数值可能包含用户数据
        logger.debug(
            "[%s] %s params=%s",
            self.mode.value,
            " ".join(query.split()),
            sorted(params or {}),
        )
        rows = self.backend.run_query(query, params or {})
        return [ResultRow(row) for row in rows]
