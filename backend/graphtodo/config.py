"""运行配置：图数据库模式、连接参数、令牌签名与 OpenID 客户端。"""

from __future__ import annotations

import secrets
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_KUZU_DB_PATH = REPO_ROOT / "backend" / "data" / "todos.kuzu"


class GraphMode(str, Enum):
    """后端模式：进程内嵌入式引擎，或远程图数据库服务。"""

    EMBEDDED = "embedded"
    REMOTE = "remote"


class Settings(BaseSettings):
    """从环境变量 / .env 读取的配置，进程启动后只读。"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    graph_mode: Optional[GraphMode] = Field(default=None, alias="GRAPH_MODE")

    kuzu_db_path: Path = Field(default=DEFAULT_KUZU_DB_PATH, alias="KUZU_DB_PATH")

    neo4j_uri: Optional[str] = Field(default=None, alias="NEO4J_URI")
    neo4j_user: Optional[str] = Field(default=None, alias="NEO4J_USER")
    neo4j_password: Optional[str] = Field(default=None, alias="NEO4J_PASSWORD")
    neo4j_database: Optional[str] = Field(default=None, alias="NEO4J_DATABASE")

    jwt_salt: Optional[str] = Field(default=None, alias="JWT_SALT")
    jwt_ttl_seconds: Optional[int] = Field(default=None, gt=0, alias="JWT_TTL_SECONDS")

    oidc_client_id: Optional[str] = Field(default=None, alias="OIDC_CLIENT_ID")
    oidc_secret: Optional[str] = Field(default=None, alias="OIDC_SECRET")
    oidc_discovery_uri: Optional[str] = Field(default=None, alias="OIDC_DISCOVERY_URI")

    # 未配置时每次启动随机生成，重启后旧会话失效
    session_secret: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32), alias="SESSION_SECRET"
    )

    @field_validator("graph_mode", mode="before")
    @classmethod
    def normalize_graph_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("kuzu_db_path")
    @classmethod
    def resolve_kuzu_db_path(cls, value: Path) -> Path:
        return value if value.is_absolute() else REPO_ROOT / value

    def require_graph_mode(self) -> GraphMode:
        """快速失败：模式必须显式配置，且远程模式必须给出连接地址。"""
        if self.graph_mode is None:
            raise RuntimeError(
                "GRAPH_MODE 未配置：必须显式设置为 embedded/remote（例如：GRAPH_MODE=embedded）。"
            )
        if self.graph_mode == GraphMode.REMOTE and not self.neo4j_uri:
            raise RuntimeError("GRAPH_MODE=remote 时必须配置 NEO4J_URI。")
        return self.graph_mode


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """配置单例：模式在进程生命周期内固定。"""
    return Settings()
