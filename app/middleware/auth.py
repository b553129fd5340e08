"""
Admin API key authentication.

The /admin endpoints (policy hot-reload, decision log, analytics) take a
single shared key, sent as X-API-Key or as ?key= for quick checks from a
browser. Compared in constant time; whitespace around the key is ignored.
"""

import hmac

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from app.config import get_settings

import structlog

logger = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _matches(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.strip().encode(), expected.encode())


async def require_admin_key(
    request: Request,
    api_key: str | None = Security(api_key_header),
) -> str:
    """Require the admin API key. Returns the key on success."""
    if not api_key:
        api_key = request.query_params.get("key")

    expected = get_settings().admin_api_key
    if not api_key or not expected or not _matches(api_key, expected):
        logger.warning("admin_auth_failed", path=request.url.path,
                       client=request.client.host if request.client else None)
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid API key. Include X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key
