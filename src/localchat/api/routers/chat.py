from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...config import AppConfig, get_config
from ...domain.chat_models import ChatRequest, ChatResponse
from ...domain.errors import GenerationError
from ...domain.key_models import ApiKey
from ...infrastructure.api_key_store import InMemoryApiKeyStore, get_api_key_store
from ...security.api_keys import optional_api_key
from ...services.chat_service import ChatService
from ...services.stream_controller import StreamingChatTurn
from ..dependencies import get_chat_service
from ..disconnect import cancel_on_disconnect
from ..sse import EventStreamResponse

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", response_model=ChatResponse, response_model_by_alias=True)
async def chat(
    req: ChatRequest,
    request: Request,
    service: ChatService = Depends(get_chat_service),
    key: Optional[ApiKey] = Depends(optional_api_key),
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
):
    turn = await service.prepare(req)
    try:
        async with cancel_on_disconnect(request) as token:
            result = await service.buffered_turn(turn, token)
    except GenerationError as exc:
        return JSONResponse(
            status_code=exc.http_status,
            content={
                **exc.to_payload(),
                "history": [h.model_dump(by_alias=True) for h in service.history(turn.session_id)],
                "sessionId": turn.session_id,
            },
        )
    if key is not None:
        await keys.record_usage(key.id)
    return result


@router.post("/stream", response_class=EventStreamResponse)
async def chat_stream(
    req: ChatRequest,
    service: ChatService = Depends(get_chat_service),
    config: AppConfig = Depends(get_config),
    key: Optional[ApiKey] = Depends(optional_api_key),
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
) -> EventStreamResponse:
    turn = await service.prepare(req)

    async def record_key_usage() -> None:
        if key is not None:
            await keys.record_usage(key.id)

    controller = StreamingChatTurn(
        service,
        turn,
        heartbeat_interval=config.heartbeat_interval,
        on_complete=record_key_usage,
    )

    async def close_turn() -> None:
        controller.abort()
        await controller.aclose()

    return EventStreamResponse(controller.events(), on_close=close_turn)
