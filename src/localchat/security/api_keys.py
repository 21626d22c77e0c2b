from __future__ import annotations

"""API key gate for the chat endpoints.

Keys arrive as ``Authorization: Bearer <secret>`` or ``X-API-Key: <secret>``.
A key that is supplied but unknown is always rejected; a missing key is
rejected only when LOCALCHAT_REQUIRE_API_KEY is on.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from ..config import AppConfig, get_config
from ..domain.key_models import ApiKey
from ..infrastructure.api_key_store import InMemoryApiKeyStore, get_api_key_store


logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)
header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def extract_secret(
    creds: Optional[HTTPAuthorizationCredentials],
    header_value: Optional[str],
) -> Optional[str]:
    if creds is not None and creds.credentials:
        return creds.credentials.strip() or None
    if header_value:
        return header_value.strip() or None
    return None


async def optional_api_key(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    header_value: Optional[str] = Depends(header_scheme),
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
    config: AppConfig = Depends(get_config),
) -> Optional[ApiKey]:
    secret = extract_secret(creds, header_value)
    if secret is None:
        if config.require_api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")
        return None
    key = keys.verify(secret)
    if key is None:
        logger.warning("api_key_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return key
