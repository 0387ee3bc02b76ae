from fastapi import Header, HTTPException, status
from loguru import logger

from barbershop_api.core.settings import settings


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard operator and cron routes; open when no key is configured (local development)."""

    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        logger.warning("Rejected request with invalid internal API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
