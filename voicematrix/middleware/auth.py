"""Bearer token guard for internal operations endpoints."""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from voicematrix.config import settings
from voicematrix.utils.logging import get_logger

logger = get_logger("auth.internal")

security = HTTPBearer(auto_error=False)


async def require_internal_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Reject callers that do not present ``INTERNAL_API_TOKEN``."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expected = settings.internal_api_token.encode("utf-8")
    if not hmac.compare_digest(credentials.credentials.encode("utf-8"), expected):
        logger.warning("internal_api_token_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
