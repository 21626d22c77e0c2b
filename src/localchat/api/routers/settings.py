from __future__ import annotations

from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...config import RuntimeSettingsStore, get_runtime_settings
from ...domain.chat_models import GenerateRequest, ModelListResponse
from ...domain.errors import GenerationError
from ...domain.settings_models import CurrentSettingsResponse, SettingsResponse, SettingsUpdate
from ...services.backends import GenerationBackend, GenerationRequest
from ...services.cancellation import CancelReason, CancelToken
from ...services.connectivity import ConnectivityGuard
from ...services.relay import GenerationRelay
from ...services.streaming import format_sse
from ..dependencies import get_backend, get_guard, get_relay
from ..disconnect import cancel_on_disconnect
from ..sse import EventStreamResponse

router = APIRouter(tags=["settings"])


@router.get("/settings", response_model=SettingsResponse, response_model_by_alias=True)
async def get_settings(settings: RuntimeSettingsStore = Depends(get_runtime_settings)) -> SettingsResponse:
    return SettingsResponse(defaults=settings.defaults, current=settings.current)


@router.post("/settings", response_model=CurrentSettingsResponse, response_model_by_alias=True)
async def update_settings(
    payload: SettingsUpdate,
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
) -> CurrentSettingsResponse:
    return CurrentSettingsResponse(current=settings.apply_update(payload))


@router.get("/models", response_model=ModelListResponse, response_model_by_alias=True)
async def list_models(
    backend: GenerationBackend = Depends(get_backend),
    guard: ConnectivityGuard = Depends(get_guard),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
):
    endpoint = settings.current.api_endpoint
    try:
        await guard.ensure_reachable(endpoint)
        models = await backend.list_models(endpoint)
    except GenerationError as exc:
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())
    return ModelListResponse(models=models)


@router.post("/generate")
async def generate(
    req: GenerateRequest,
    request: Request,
    guard: ConnectivityGuard = Depends(get_guard),
    relay: GenerationRelay = Depends(get_relay),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
):
    """Raw pass-through to the backend's generate call, buffered or streamed."""
    call = GenerationRequest(
        model=req.model,
        prompt=req.prompt,
        endpoint=settings.current.api_endpoint,
        extra=req.extra_fields(),
    )
    try:
        await guard.ensure_reachable(call.endpoint)
        if not req.stream:
            async with cancel_on_disconnect(request) as token:
                completion = await relay.generate(call, token)
            return completion.raw
    except GenerationError as exc:
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    token = CancelToken()

    async def frames() -> AsyncIterator[str]:
        try:
            async for event in relay.stream(call, token):
                payload: Dict[str, Any] = event.raw
                yield format_sse(payload)
        except GenerationError as exc:
            yield format_sse(exc.to_payload())

    async def release() -> None:
        token.cancel(CancelReason.CLIENT_DISCONNECTED)
        token.close()

    return EventStreamResponse(frames(), on_close=release)
