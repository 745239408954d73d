import logging
import secrets
from typing import Annotated

from fastapi import Header, HTTPException, status

from verification_proxy.config import get_settings

logger = logging.getLogger(__name__)


async def require_admin(
    admin_token: Annotated[str | None, Header(alias="Admin-Token")] = None
) -> None:
    settings = get_settings()
    if not settings.admin_token:
        logger.error("Admin token is not configured; refusing administrative request.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "INTERNAL_ERROR", "message": "Administrative access is not configured."}
        )

    if not admin_token:
        logger.warning("Authentication failed: Admin-Token header missing.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "UNAUTHORIZED", "message": "Admin-Token header missing"}
        )

    if not secrets.compare_digest(admin_token, settings.admin_token):
        logger.warning("Authentication failed: Invalid admin token.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "UNAUTHORIZED", "message": "Invalid admin token"}
        )
