"""
Admin Key Authentication

Static key guard for the read-only admin overview.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from app.config import settings

logger = logging.getLogger(__name__)

# Admin key header scheme
admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def mask_key(key: str) -> str:
    """
    Mask a key for logging.

    Shows the first and last 3 characters only.
    """
    if len(key) < 10:
        return "***"
    return f"{key[:3]}...{key[-3:]}"


async def require_admin(
    request: Request,
    admin_key: Optional[str] = Security(admin_key_header),
) -> None:
    """
    FastAPI dependency that requires the configured admin key.

    Raises:
        HTTPException 503: Admin overview disabled (no key configured)
        HTTPException 401: No key provided
        HTTPException 403: Wrong key

    Usage:
        @router.get("/overview", dependencies=[Depends(require_admin)])
    """
    client_ip = request.client.host if request.client else "unknown"

    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin access is not configured",
        )

    if not admin_key:
        logger.warning(f"Admin auth failed: No key provided | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(admin_key.encode(), settings.admin_api_key.encode()):
        logger.warning(f"Admin auth failed: Invalid key {mask_key(admin_key)} | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )

    logger.debug(f"Admin auth success | IP: {client_ip}")
