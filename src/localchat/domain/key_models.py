from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from .chat_models import WireModel


class ApiKeyRecord(WireModel):
    """Persisted form; only the SHA-256 digest of the secret is kept."""

    id: str
    name: str
    secret_hash: str
    created_at: str
    last_used_at: Optional[str] = None

    def public(self) -> "ApiKey":
        return ApiKey(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            last_used_at=self.last_used_at,
        )


class ApiKey(WireModel):
    id: str
    name: str
    created_at: str
    last_used_at: Optional[str] = None


class ApiKeyCreate(BaseModel):
    name: Optional[str] = None


class ApiKeyCreated(WireModel):
    key: ApiKey
    secret: str
    base_url: str


class ApiKeyListResponse(WireModel):
    base_url: str
    keys: List[ApiKey]
