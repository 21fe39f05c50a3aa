"""Request guards for admin and cron callers.

Both run as FastAPI dependencies, so a rejected caller never reaches a
handler that reads game state.
"""

from __future__ import annotations

import hmac

from fastapi import Header, Request

from ..errors import AuthorizationError


def _matches(candidate: str, secrets) -> bool:
    return any(secret and hmac.compare_digest(candidate, secret) for secret in secrets)


async def require_admin(request: Request, x_admin_token: str | None = Header(default=None)) -> str:
    if not x_admin_token:
        raise AuthorizationError("admin token required", status_code=401)
    if not _matches(x_admin_token, request.app.state.server_config.auth.admin_tokens):
        raise AuthorizationError("admin token rejected", status_code=403)
    return x_admin_token


async def require_cron(request: Request, authorization: str | None = Header(default=None)) -> None:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthorizationError("cron bearer token required", status_code=401)
    if not _matches(token, (request.app.state.server_config.auth.cron_secret,)):
        raise AuthorizationError("cron token rejected", status_code=403)
