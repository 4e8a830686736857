"""令牌签发：对已认证的 profile 做净化后用 HS256 签名。"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import jwt

logger = logging.getLogger(__name__)

RESERVED_CLAIM = "sub"
SIGNING_ALGORITHM = "HS256"


class TokenConfigError(RuntimeError):
    """签名密钥缺失或非法。"""


def sanitize_profile(profile: Mapping[str, Any]) -> dict[str, Any]:
    """返回去掉保留声明的副本，调用方的 profile 保持不变。"""
    return {key: value for key, value in profile.items() if key != RESERVED_CLAIM}


def generate_token(
    secret: str | None,
    profile: Mapping[str, Any],
    *,
    ttl_seconds: int | None = None,
    now: datetime | None = None,
) -> str:
    if secret is None or not secret.strip():
        raise TokenConfigError("JWT_SALT 未配置：无法签发令牌。")
    claims = sanitize_profile(profile)
    issued_at = now or datetime.now(timezone.utc)
    claims["iat"] = int(issued_at.timestamp())
    if ttl_seconds is not None:
        claims["exp"] = int((issued_at + timedelta(seconds=ttl_seconds)).timestamp())
    logger.info("generating token")
    return jwt.encode(claims, secret, algorithm=SIGNING_ALGORITHM)
