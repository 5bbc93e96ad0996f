# autoship/api/auth.py
"""
API key validation for the ops API.

The key comes from PipelineConfig.api_key; when it is unset authentication
is disabled (development only). Comparison is constant-time.
"""

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Header, Request, status

logger = logging.getLogger("autoship.api.auth")


async def verify_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """
    FastAPI dependency - validates the X-API-Key header.

    Raises:
        HTTPException: 401 if key missing, 403 if key invalid
    """
    expected = request.app.state.config.api_key
    if not expected:
        logger.debug("Authentication bypassed - AUTOSHIP_API_KEY not configured")
        return "dev-bypass"

    if not x_api_key:
        logger.warning("Request rejected - missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-API-Key header",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Request rejected - invalid API key: {x_api_key[:8]}...")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")

    return x_api_key


def generate_api_key(length: int = 32) -> str:
    """URL-safe random key for AUTOSHIP_API_KEY"""
    return secrets.token_urlsafe(length)


def is_auth_enabled(config) -> bool:
    return bool(config.api_key)
