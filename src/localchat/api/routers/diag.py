from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from ...config import RuntimeSettingsStore, get_runtime_settings
from ...infrastructure.api_key_store import InMemoryApiKeyStore, get_api_key_store
from ...infrastructure.session_store import SessionStore, get_session_store

router = APIRouter(tags=["diagnostics"])


@router.get("/health")
async def health(
    store: SessionStore = Depends(get_session_store),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
):
    summaries = store.list()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "sessions": {
            "count": len(summaries),
            "active": store.active_session_id,
            "histories": [
                {"id": s.id, "name": s.name, "historyLength": s.history_length}
                for s in summaries
            ],
        },
        "settings": settings.current.model_dump(by_alias=True),
        "apiKeys": {"total": keys.count()},
    }
