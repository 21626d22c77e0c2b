from __future__ import annotations

"""Process configuration.

Two layers:
- ``AppConfig``: read once from the environment at start-up (frozen).
- ``RuntimeSettingsStore``: the mutable defaults the UI edits through
  ``/api/settings`` (model, endpoint, instructions, history window, ...).

Env vars:
- OLLAMA_MODEL, OLLAMA_HOST
- LOCALCHAT_BACKEND (http | process)
- LOCALCHAT_STORAGE_DIR
- ATTACHMENT_CHAR_LIMIT, MAX_ATTACHMENTS, CONTEXT_MESSAGES
- LOCALCHAT_CONNECT_TIMEOUT, LOCALCHAT_GENERATION_TIMEOUT, LOCALCHAT_STREAM_TIMEOUT
- LOCALCHAT_HEARTBEAT_INTERVAL, LOCALCHAT_REQUIRE_API_KEY
- APP_BASE_URL / PUBLIC_URL, HOST, PORT
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlparse

from .domain.settings_models import RuntimeSettings, SettingsUpdate


logger = logging.getLogger(__name__)

FALLBACK_MODEL = "qwen3:1.7B"
DEFAULT_ENDPOINT = "http://127.0.0.1:11434"
DEFAULT_SYSTEM_INSTRUCTIONS = (
    "You are an honest, detail-oriented AI assistant that helps the user accomplish local tasks."
)
DEFAULT_ATTACHMENT_CHAR_LIMIT = 200_000
DEFAULT_MAX_ATTACHMENTS = 10
DEFAULT_CONTEXT_MESSAGES = 20


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _env_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_optional_seconds(name: str, default: Optional[float]) -> Optional[float]:
    """Like ``_env_float`` but ``0`` (or a negative value) means no limit."""
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else None


def _env_flag(name: str) -> bool:
    return (_getenv(name) or "").lower() in ("1", "true", "yes", "on")


def with_trailing_slash(value: Optional[str]) -> str:
    if not value:
        return "/"
    return value if value.endswith("/") else f"{value}/"


def normalize_base_url(url: Optional[str], base: str) -> Optional[str]:
    """Resolve ``url`` against ``base`` and keep it only if it is http(s)."""
    if not url:
        return None
    trimmed = url.strip()
    if not trimmed:
        return None
    resolved = urljoin(base, trimmed)
    parsed = urlparse(resolved)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        logger.warning("invalid_backend_base_url_ignored", extra={"value": trimmed})
        return None
    return with_trailing_slash(resolved)


@dataclass(frozen=True)
class AppConfig:
    default_model: str = FALLBACK_MODEL
    default_endpoint: str = DEFAULT_ENDPOINT
    backend: str = "http"
    storage_dir: Path = Path("storage")
    attachment_char_limit: int = DEFAULT_ATTACHMENT_CHAR_LIMIT
    max_attachments: int = DEFAULT_MAX_ATTACHMENTS
    context_messages: int = DEFAULT_CONTEXT_MESSAGES
    connect_timeout: float = 10.0
    generation_timeout: float = 600.0
    stream_timeout: Optional[float] = None
    heartbeat_interval: float = 15.0
    require_api_key: bool = False
    host: str = "127.0.0.1"
    port: int = 3000
    base_url: str = "http://localhost:3000/"

    @property
    def sessions_file(self) -> Path:
        return self.storage_dir / "sessions.json"

    @property
    def api_keys_file(self) -> Path:
        return self.storage_dir / "api-keys.json"

    @staticmethod
    def from_env(detect_model: bool = True) -> "AppConfig":
        port = _env_int("PORT", 3000)
        model = _getenv("OLLAMA_MODEL")
        if not model and detect_model:
            from .services.backends import detect_local_model

            model = detect_local_model()
        backend = (_getenv("LOCALCHAT_BACKEND") or "http").lower()
        if backend not in ("http", "process"):
            logger.warning("unknown_backend_kind_using_http", extra={"backend": backend})
            backend = "http"
        raw_base = _getenv("APP_BASE_URL") or _getenv("PUBLIC_URL") or f"http://localhost:{port}"
        return AppConfig(
            default_model=model or FALLBACK_MODEL,
            default_endpoint=_getenv("OLLAMA_HOST", DEFAULT_ENDPOINT) or DEFAULT_ENDPOINT,
            backend=backend,
            storage_dir=Path(_getenv("LOCALCHAT_STORAGE_DIR", "storage") or "storage"),
            attachment_char_limit=_env_int("ATTACHMENT_CHAR_LIMIT", DEFAULT_ATTACHMENT_CHAR_LIMIT),
            max_attachments=_env_int("MAX_ATTACHMENTS", DEFAULT_MAX_ATTACHMENTS),
            context_messages=_env_int("CONTEXT_MESSAGES", DEFAULT_CONTEXT_MESSAGES),
            connect_timeout=_env_float("LOCALCHAT_CONNECT_TIMEOUT", 10.0),
            generation_timeout=_env_float("LOCALCHAT_GENERATION_TIMEOUT", 600.0),
            stream_timeout=_env_optional_seconds("LOCALCHAT_STREAM_TIMEOUT", None),
            heartbeat_interval=_env_float("LOCALCHAT_HEARTBEAT_INTERVAL", 15.0),
            require_api_key=_env_flag("LOCALCHAT_REQUIRE_API_KEY"),
            host=_getenv("HOST", "127.0.0.1") or "127.0.0.1",
            port=port,
            base_url=with_trailing_slash(raw_base),
        )

    def default_settings(self) -> RuntimeSettings:
        return RuntimeSettings(
            model=self.default_model,
            api_endpoint=self.default_endpoint,
            theme="system",
            system_instructions=DEFAULT_SYSTEM_INSTRUCTIONS,
            max_history=self.context_messages,
            backend_base_url=self.base_url,
        )


class RuntimeSettingsStore:
    """In-process holder for the UI-editable defaults. Not persisted."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._defaults = config.default_settings()
        self._current = self._defaults.model_copy()

    @property
    def defaults(self) -> RuntimeSettings:
        return self._defaults

    @property
    def current(self) -> RuntimeSettings:
        return self._current

    def apply_update(self, update: SettingsUpdate) -> RuntimeSettings:
        changes: Dict[str, Any] = {}
        for field in ("model", "api_endpoint", "theme", "system_instructions"):
            value = getattr(update, field)
            if value:
                changes[field] = value

        base_url = normalize_base_url(update.backend_base_url, self._config.base_url)
        if base_url:
            changes["backend_base_url"] = base_url

        if update.max_history is not None:
            try:
                parsed = int(float(update.max_history))
            except (TypeError, ValueError):
                parsed = 0
            if parsed > 0:
                changes["max_history"] = parsed

        self._current = self._current.model_copy(update=changes)
        if not self._current.backend_base_url:
            self._current = self._current.model_copy(update={"backend_base_url": self._config.base_url})
        return self._current


_config: Optional[AppConfig] = None
_runtime_settings: Optional[RuntimeSettingsStore] = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def get_runtime_settings() -> RuntimeSettingsStore:
    global _runtime_settings
    if _runtime_settings is None:
        _runtime_settings = RuntimeSettingsStore(get_config())
    return _runtime_settings
