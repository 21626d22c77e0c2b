from __future__ import annotations

"""FastAPI providers for the backend side of a chat turn.

Tests swap any of these through ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends

from ..config import AppConfig, RuntimeSettingsStore, get_config, get_runtime_settings
from ..infrastructure.session_store import SessionStore, get_session_store
from ..services.backends import GenerationBackend, build_backend
from ..services.chat_service import ChatService
from ..services.connectivity import ConnectivityGuard
from ..services.relay import GenerationRelay


_backend: Optional[GenerationBackend] = None


def get_backend(config: AppConfig = Depends(get_config)) -> GenerationBackend:
    global _backend
    if _backend is None:
        _backend = build_backend(config)
    return _backend


def get_guard(
    backend: GenerationBackend = Depends(get_backend),
    config: AppConfig = Depends(get_config),
) -> ConnectivityGuard:
    return ConnectivityGuard(backend, timeout=config.connect_timeout)


def get_relay(
    backend: GenerationBackend = Depends(get_backend),
    config: AppConfig = Depends(get_config),
) -> GenerationRelay:
    return GenerationRelay(
        backend,
        generation_timeout=config.generation_timeout,
        stream_timeout=config.stream_timeout,
    )


def get_chat_service(
    store: SessionStore = Depends(get_session_store),
    settings: RuntimeSettingsStore = Depends(get_runtime_settings),
    guard: ConnectivityGuard = Depends(get_guard),
    relay: GenerationRelay = Depends(get_relay),
    config: AppConfig = Depends(get_config),
) -> ChatService:
    return ChatService(store, settings, guard, relay, config)
