from pathlib import Path

from localchat.config import AppConfig, FALLBACK_MODEL, RuntimeSettingsStore, normalize_base_url
from localchat.domain.settings_models import SettingsUpdate


def test_from_env_defaults(monkeypatch):
    for name in (
        "OLLAMA_MODEL",
        "OLLAMA_HOST",
        "LOCALCHAT_BACKEND",
        "LOCALCHAT_STORAGE_DIR",
        "LOCALCHAT_STREAM_TIMEOUT",
        "APP_BASE_URL",
        "PUBLIC_URL",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    cfg = AppConfig.from_env(detect_model=False)
    assert cfg.default_model == FALLBACK_MODEL
    assert cfg.default_endpoint == "http://127.0.0.1:11434"
    assert cfg.backend == "http"
    assert cfg.sessions_file == Path("storage") / "sessions.json"
    assert cfg.api_keys_file == Path("storage") / "api-keys.json"
    assert cfg.stream_timeout is None
    assert cfg.generation_timeout == 600.0
    assert cfg.base_url == "http://localhost:3000/"


def test_from_env_overrides_and_bad_numbers(monkeypatch, tmp_path):
    monkeypatch.setenv("OLLAMA_MODEL", "llama3:8b")
    monkeypatch.setenv("LOCALCHAT_BACKEND", "Process")
    monkeypatch.setenv("LOCALCHAT_STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("MAX_ATTACHMENTS", "not-a-number")
    monkeypatch.setenv("CONTEXT_MESSAGES", "8")
    monkeypatch.setenv("LOCALCHAT_STREAM_TIMEOUT", "90")
    monkeypatch.setenv("LOCALCHAT_REQUIRE_API_KEY", "yes")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.delenv("APP_BASE_URL", raising=False)
    monkeypatch.delenv("PUBLIC_URL", raising=False)
    cfg = AppConfig.from_env(detect_model=False)
    assert cfg.default_model == "llama3:8b"
    assert cfg.backend == "process"
    assert cfg.storage_dir == tmp_path
    assert cfg.max_attachments == 10
    assert cfg.context_messages == 8
    assert cfg.stream_timeout == 90.0
    assert cfg.require_api_key is True
    assert cfg.base_url == "http://localhost:8080/"


def test_unknown_backend_kind_falls_back_to_http(monkeypatch):
    monkeypatch.setenv("LOCALCHAT_BACKEND", "grpc")
    assert AppConfig.from_env(detect_model=False).backend == "http"


def test_normalize_base_url():
    base = "http://localhost:3000/"
    assert normalize_base_url("https://chat.example.com/v1", base) == "https://chat.example.com/v1/"
    assert normalize_base_url("api", base) == "http://localhost:3000/api/"
    assert normalize_base_url("  ", base) is None
    assert normalize_base_url("javascript:alert(1)", base) is None


def test_runtime_settings_ignore_empty_values():
    store = RuntimeSettingsStore(AppConfig())
    current = store.apply_update(SettingsUpdate(model="", system_instructions="Be nice", max_history=2.9))
    assert current.model == FALLBACK_MODEL
    assert current.system_instructions == "Be nice"
    assert current.max_history == 2
    assert store.defaults.system_instructions != "Be nice"
