"""Bearer-token guard for the admin session API.

The guard is built per app from the Settings that app was created with:

  admin_api_key set, token matches      → allow
  admin_api_key set, token wrong/absent → 401
  no admin_api_key, debug on            → allow
  no admin_api_key, debug off           → 403
"""

from __future__ import annotations

import logging
import secrets
from typing import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_booking.config import Settings

log = logging.getLogger("clinic_booking.auth")

_bearer_scheme = HTTPBearer(auto_error=False)

AdminGuard = Callable[..., Awaitable[None]]


def make_admin_guard(config: Settings) -> AdminGuard:
    """FastAPI dependency checking admin requests against ``config``."""

    async def require_admin_token(
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    ) -> None:
        key = config.admin_api_key
        if not key:
            if config.debug:
                return
            log.warning("Admin request refused: no admin API key configured")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin API disabled: ADMIN_API_KEY is not set.",
            )

        supplied = credentials.credentials if credentials else ""
        if not secrets.compare_digest(supplied.encode(), key.encode()):
            log.warning("Admin request refused: bad or missing bearer token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing admin token.",
                headers={"WWW-Authenticate": "Bearer"},
            )

    return require_admin_token
