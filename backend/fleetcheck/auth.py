"""API token gate for mutating endpoints."""
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException

from .config import settings, parse_api_tokens

logger = logging.getLogger(__name__)


def _hash(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def identify(token: str) -> Optional[str]:
    """Username for a presented token, or None. Compares hashes in constant time."""
    presented = _hash(token)
    username = None
    for configured, name in parse_api_tokens(settings.api_tokens).items():
        if hmac.compare_digest(presented, _hash(configured)):
            username = name
    return username


async def require_user(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> str:
    """Resolve the caller from `Authorization: Bearer <token>` or `X-API-Key`.

    With no tokens configured every request is rejected.
    """
    token = x_api_key
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            token = value.strip()

    if not token:
        raise HTTPException(status_code=401, detail="Missing API token", headers={"WWW-Authenticate": "Bearer"})

    username = identify(token)
    if username is None:
        logger.warning("Rejected request with invalid API token")
        raise HTTPException(status_code=401, detail="Invalid API token", headers={"WWW-Authenticate": "Bearer"})
    return username
