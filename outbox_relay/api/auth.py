"""
Bearer-token guards for operational endpoints.

Two shared secrets, both from settings:
- ``ADMIN_TOKEN`` guards processor control and deadletter retry. Without
  it configured those endpoints always answer 401.
- ``CRON_SECRET`` guards the queue processing trigger. Without it
  configured the trigger is open, for local development.
"""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from outbox_relay.config import get_settings

# Security scheme; missing headers are handled below so they map to 401
security = HTTPBearer(auto_error=False)

Credentials = Annotated[HTTPAuthorizationCredentials | None, Depends(security)]


def _matches(credentials: HTTPAuthorizationCredentials | None, secret: str) -> bool:
    if credentials is None:
        return False
    return hmac.compare_digest(credentials.credentials.encode(), secret.encode())


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_admin_token(credentials: Credentials) -> None:
    """
    FastAPI dependency requiring ``Authorization: Bearer <ADMIN_TOKEN>``.

    Raises:
        HTTPException: 401 if the token is missing, wrong or not configured.
    """
    admin_token = get_settings().admin_token
    if not admin_token or not _matches(credentials, admin_token):
        raise _unauthorized("Unauthorized - admin token required")


async def require_cron_secret(credentials: Credentials) -> None:
    """
    FastAPI dependency requiring ``Authorization: Bearer <CRON_SECRET>`` when configured.

    Raises:
        HTTPException: 401 if a secret is configured and not presented.
    """
    cron_secret = get_settings().cron_secret
    if cron_secret and not _matches(credentials, cron_secret):
        raise _unauthorized("Unauthorized")


AdminAuth = Depends(require_admin_token)
CronAuth = Depends(require_cron_secret)
