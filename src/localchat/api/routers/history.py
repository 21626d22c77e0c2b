from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...domain.chat_models import HistoryResponse
from ...infrastructure.session_store import SessionStore, get_session_store

router = APIRouter(prefix="/history", tags=["history"])


def _resolve(store: SessionStore, session_id: Optional[str]) -> str:
    return session_id or store.active_session_id


@router.get("", response_model=HistoryResponse, response_model_by_alias=True)
async def get_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: SessionStore = Depends(get_session_store),
) -> HistoryResponse:
    target = _resolve(store, session_id)
    return HistoryResponse(session_id=target, history=store.history(target))


@router.delete("", response_model=HistoryResponse, response_model_by_alias=True)
async def clear_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: SessionStore = Depends(get_session_store),
) -> HistoryResponse:
    target = _resolve(store, session_id)
    history = await store.clear_history(target)
    return HistoryResponse(session_id=target, history=history)
