"""领域模型：Todo 记录。"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Todo(BaseModel):
    """待办事项。`id` 是外部提供的自然键，对外 JSON 字段名为 `guid`。"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    # 缺失的 id 只会让该条目的 merge 失败，不拒绝整批提交
    id: Optional[str] = Field(default=None, alias="guid")
    title: str = ""
    completed: bool = False
