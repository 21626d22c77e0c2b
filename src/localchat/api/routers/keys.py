from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from ...config import RuntimeSettingsStore, get_runtime_settings
from ...domain.key_models import ApiKeyCreate, ApiKeyCreated, ApiKeyListResponse
from ...infrastructure.api_key_store import InMemoryApiKeyStore, get_api_key_store

router = APIRouter(prefix="/keys", tags=["api-keys"])


@router.get("", response_model=ApiKeyListResponse, response_model_by_alias=True)
async def list_keys(
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
) -> ApiKeyListResponse:
    return ApiKeyListResponse(base_url=settings.current.backend_base_url, keys=keys.list())


@router.post(
    "",
    response_model=ApiKeyCreated,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_key(
    payload: ApiKeyCreate | None = None,
    keys: InMemoryApiKeyStore = Depends(get_api_key_store),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
) -> ApiKeyCreated:
    key, secret = await keys.create(payload.name if payload else None)
    # The plaintext secret is only ever returned here.
    return ApiKeyCreated(key=key, secret=secret, base_url=settings.current.backend_base_url)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_key(key_id: str, keys: InMemoryApiKeyStore = Depends(get_api_key_store)) -> Response:
    await keys.delete(key_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
