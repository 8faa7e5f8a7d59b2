from typing import Optional
import hmac

from fastapi import Header, HTTPException, status

from oonjai.core.config import settings


def verify_api_key(api_key: str) -> bool:
    """Verify API key against configured valid keys."""
    return any(hmac.compare_digest(api_key.encode(), key.encode()) for key in settings.VALID_API_KEYS)


def verify_api_key_dependency(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> bool:
    """
    Dependency to verify API key via X-API-Key or `Authorization: Bearer <key>`
    """
    if not settings.REQUIRE_API_KEY:
        return True

    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ", 1)[1]

    if not api_key or not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return True
