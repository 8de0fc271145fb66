"""X-API-Key check applied to every job, context and session route."""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from src.config import Settings, get_settings

logger = logging.getLogger(__name__)

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _key_matches(presented: str | None, configured: str) -> bool:
    # An unset API_KEY locks the routes instead of opening them.
    if not presented or not configured:
        return False
    return hmac.compare_digest(presented.encode(), configured.encode())


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
    settings: Settings = Depends(get_settings),
) -> str:
    if not _key_matches(api_key, settings.api_key):
        logger.warning(
            "rejected request with invalid api key",
            extra={"path": request.url.path, "key_present": bool(api_key)},
        )
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key
