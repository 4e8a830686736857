"""图存储层异常。"""

from __future__ import annotations


class GraphStorageError(RuntimeError):
    """图存储失败的基类。"""


class GraphUnavailableError(GraphStorageError):
    """后端不可达：无法打开数据库或获取连接。"""


class GraphQueryError(GraphStorageError):
    """查询语法错误或执行期错误。"""


class RowTypeError(TypeError):
    def __init__(self, column: str, expected: type, actual: object):
        self.column = column
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"column {column!r} expected {expected.__name__}, "
            f"got {type(actual).__name__}: {actual!r}"
        )
