from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..config import get_config
from ..domain.key_models import ApiKey, ApiKeyRecord
from .json_storage import JsonDocumentFile


logger = logging.getLogger(__name__)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_secret() -> str:
    # 24 random bytes, URL-safe base64 without padding
    return secrets.token_urlsafe(24)


class InMemoryApiKeyStore:
    def __init__(self) -> None:
        self._keys: Dict[str, ApiKeyRecord] = {}

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    async def _save(self) -> None:
        return None

    def load_document(self, document: Dict[str, Any]) -> None:
        keys: Dict[str, ApiKeyRecord] = {}
        raw_keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(raw_keys, dict):
            if raw_keys is not None:
                logger.warning("api_keys_document_malformed", extra={"found": type(raw_keys).__name__})
            raw_keys = {}
        for key_id, raw in raw_keys.items():
            try:
                keys[key_id] = ApiKeyRecord.model_validate(raw)
            except ValidationError:
                logger.warning("api_key_dropped_on_load", extra={"key_id": key_id})
        self._keys = keys

    def to_document(self) -> Dict[str, Any]:
        return {"keys": {kid: rec.model_dump(by_alias=True) for kid, rec in self._keys.items()}}

    def count(self) -> int:
        return len(self._keys)

    def list(self) -> List[ApiKey]:
        return [rec.public() for rec in self._keys.values()]

    async def create(self, name: Optional[str] = None) -> Tuple[ApiKey, str]:
        """Return the public record and the plaintext secret (shown once)."""
        secret = generate_secret()
        record = ApiKeyRecord(
            id=str(uuid.uuid4()),
            name=(name or "").strip() or f"Key {len(self._keys) + 1}",
            secret_hash=hash_secret(secret),
            created_at=self._now_iso(),
        )
        self._keys[record.id] = record
        await self._save()
        logger.info("api_key_created", extra={"key_id": record.id})
        return record.public(), secret

    async def delete(self, key_id: str) -> bool:
        if self._keys.pop(key_id, None) is None:
            return False
        await self._save()
        logger.info("api_key_deleted", extra={"key_id": key_id})
        return True

    def verify(self, secret: str) -> Optional[ApiKey]:
        digest = hash_secret(secret)
        for record in self._keys.values():
            if hmac.compare_digest(record.secret_hash, digest):
                return record.public()
        return None

    async def record_usage(self, key_id: str) -> None:
        record = self._keys.get(key_id)
        if record is None:
            return
        record.last_used_at = self._now_iso()
        await self._save()


class FileApiKeyStore(InMemoryApiKeyStore):
    def __init__(self, file_path: Path) -> None:
        super().__init__()
        self._file = JsonDocumentFile(Path(file_path), lambda: {"keys": {}})
        self.load_document(self._file.load())

    async def _save(self) -> None:
        await self._file.write(self.to_document())


_store: Optional[InMemoryApiKeyStore] = None


def get_api_key_store() -> InMemoryApiKeyStore:
    global _store
    if _store is None:
        _store = FileApiKeyStore(get_config().api_keys_file)
    return _store
