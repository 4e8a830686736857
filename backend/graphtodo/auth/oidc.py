"""OpenID Connect 登录：Authlib 客户端、会话中的 profile 与访问守卫。"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Mapping

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from graphtodo.config import get_settings

logger = logging.getLogger(__name__)

PROFILE_SESSION_KEY = "profile"

# ID Token 的协议字段，不属于用户 profile
_ID_TOKEN_CLAIMS = frozenset({"aud", "azp", "at_hash", "exp", "iat", "iss", "nonce"})

router = APIRouter()


@lru_cache(maxsize=1)
def get_oauth() -> OAuth:
    settings = get_settings()
    if not (
        settings.oidc_client_id and settings.oidc_secret and settings.oidc_discovery_uri
    ):
        raise RuntimeError(
            "OpenID 未配置：需要 OIDC_CLIENT_ID / OIDC_SECRET / OIDC_DISCOVERY_URI。"
        )
    oauth = OAuth()
    oauth.register(
        name="oidc",
        client_id=settings.oidc_client_id,
        client_secret=settings.oidc_secret,
        server_metadata_url=settings.oidc_discovery_uri,
        client_kwargs={"scope": "openid email profile"},
    )
    return oauth


def profile_from_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in claims.items() if key not in _ID_TOKEN_CLAIMS}


def get_current_profile(request: Request) -> dict[str, Any]:
    """守卫：会话中没有已认证 profile 时返回 401。每次返回新副本。"""
    profile = request.session.get(PROFILE_SESSION_KEY)
    if not profile:
        raise HTTPException(status_code=401, detail="authentication required")
    return dict(profile)


@router.get("/login")
async def login_endpoint(request: Request, oauth: OAuth = Depends(get_oauth)):
    redirect_uri = request.url_for("auth_callback_endpoint")
    return await oauth.oidc.authorize_redirect(request, redirect_uri, prompt="consent")


@router.get("/auth/callback")
async def auth_callback_endpoint(request: Request, oauth: OAuth = Depends(get_oauth)):
    try:
        token = await oauth.oidc.authorize_access_token(request)
    except OAuthError as exc:
        raise HTTPException(status_code=401, detail=exc.error) from exc
    claims = token.get("userinfo") or await oauth.oidc.userinfo(token=token)
    request.session[PROFILE_SESSION_KEY] = profile_from_claims(claims)
    logger.info("Authenticated %s", claims.get("email") or claims.get("sub"))
    return RedirectResponse(url="/private")


@router.get("/logout")
async def logout_endpoint(request: Request):
    request.session.pop(PROFILE_SESSION_KEY, None)
    return RedirectResponse(url="/public")
