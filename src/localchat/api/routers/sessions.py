from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.chat_models import (
    ActiveSessionResponse,
    SessionCreate,
    SessionEnvelope,
    SessionListResponse,
    SessionUpdate,
)
from ...domain.errors import ProtectedResourceError, SessionExistsError, SessionNotFoundError
from ...infrastructure.session_store import SessionStore, get_session_store

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=SessionListResponse, response_model_by_alias=True)
async def list_sessions(store: SessionStore = Depends(get_session_store)) -> SessionListResponse:
    return SessionListResponse(sessions=store.list(), active_session_id=store.active_session_id)


@router.post(
    "",
    response_model=SessionEnvelope,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(payload: SessionCreate, store: SessionStore = Depends(get_session_store)) -> SessionEnvelope:
    try:
        session = await store.create(payload)
    except SessionExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return SessionEnvelope(session=session)


@router.get("/{session_id}", response_model=SessionEnvelope, response_model_by_alias=True)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> SessionEnvelope:
    try:
        return SessionEnvelope(session=store.get(session_id))
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.put("/{session_id}", response_model=SessionEnvelope, response_model_by_alias=True)
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    store: SessionStore = Depends(get_session_store),
) -> SessionEnvelope:
    try:
        session = await store.update(session_id, payload)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SessionEnvelope(session=session)


@router.post("/{session_id}/select", response_model=ActiveSessionResponse, response_model_by_alias=True)
async def select_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> ActiveSessionResponse:
    store.ensure(session_id)
    active = await store.select_active(session_id)
    return ActiveSessionResponse(active_session_id=active)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> Response:
    try:
        await store.delete(session_id)
    except ProtectedResourceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
