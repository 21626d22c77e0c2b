import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

# Never shell out to `ollama list` while collecting tests.
os.environ.setdefault("OLLAMA_MODEL", "qwen3:1.7B")

from fastapi.testclient import TestClient  # noqa: E402

from fakes import FakeBackend  # noqa: E402
from localchat.api.dependencies import get_backend  # noqa: E402
from localchat.api.main import app  # noqa: E402
from localchat.config import AppConfig, RuntimeSettingsStore, get_config, get_runtime_settings  # noqa: E402
from localchat.infrastructure.api_key_store import FileApiKeyStore, get_api_key_store  # noqa: E402
from localchat.infrastructure.session_store import FileSessionStore, get_session_store  # noqa: E402


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(storage_dir=tmp_path, heartbeat_interval=0.05)


@pytest.fixture
def session_store(app_config):
    return FileSessionStore(app_config.sessions_file)


@pytest.fixture
def key_store(app_config):
    return FileApiKeyStore(app_config.api_keys_file)


@pytest.fixture
def runtime_settings(app_config):
    return RuntimeSettingsStore(app_config)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def client(app_config, session_store, key_store, runtime_settings, fake_backend):
    """TestClient wired to tmp_path storage and an in-process backend."""
    app.dependency_overrides[get_config] = lambda: app_config
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_api_key_store] = lambda: key_store
    app.dependency_overrides[get_runtime_settings] = lambda: runtime_settings
    app.dependency_overrides[get_backend] = lambda: fake_backend
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
