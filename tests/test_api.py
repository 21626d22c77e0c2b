import asyncio
import json

from fakes import unreachable
from localchat.domain.errors import GenerationError


def _sse_events(text: str):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def test_health_reports_sessions_settings_and_keys(client):
    for path in ("/health", "/api/health"):
        r = client.get(path)
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["sessions"]["count"] == 1
        assert body["sessions"]["active"] == "default"
        assert body["sessions"]["histories"][0] == {"id": "default", "name": "Default Session", "historyLength": 0}
        assert body["settings"]["model"] == "qwen3:1.7B"
        assert body["apiKeys"] == {"total": 0}


def test_metrics_endpoint_exposes_prometheus_text(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "localchat_request_latency_seconds" in r.text


def test_session_crud_flow(client):
    r = client.post("/api/sessions", json={"name": "Demo", "instructions": "Be brief"})
    assert r.status_code == 201
    session = r.json()["session"]
    assert session["id"] == "demo"
    assert session["instructions"] == "Be brief"

    r = client.post("/api/sessions", json={"name": "Demo"})
    assert r.json()["session"]["id"] != "demo"

    r = client.put("/api/sessions/demo", json={"presetId": "coder"})
    assert r.status_code == 200
    updated = r.json()["session"]
    assert updated["presetId"] == "coder"
    assert updated["name"] == "Demo"

    r = client.post("/api/sessions/demo/select")
    assert r.json() == {"activeSessionId": "demo"}

    listing = client.get("/api/sessions").json()
    assert listing["activeSessionId"] == "demo"
    assert {s["id"] for s in listing["sessions"]} >= {"default", "demo"}
    assert "historyLength" in listing["sessions"][0]

    assert client.delete("/api/sessions/demo").status_code == 204
    assert client.get("/api/sessions").json()["activeSessionId"] == "default"
    assert client.get("/api/sessions/demo").status_code == 404


def test_session_errors(client):
    assert client.delete("/api/sessions/default").status_code == 400
    assert client.put("/api/sessions/nope", json={"name": "x"}).status_code == 404
    client.post("/api/sessions", json={"id": "fixed", "name": "Fixed"})
    assert client.post("/api/sessions", json={"id": "fixed"}).status_code == 409


def test_select_unknown_session_creates_it(client):
    r = client.post("/api/sessions/brand-new/select")
    assert r.status_code == 200
    assert client.get("/api/sessions/brand-new").json()["session"]["name"].startswith("Session ")


def test_buffered_chat_appends_history(client, fake_backend, session_store):
    fake_backend.reply = "Hi!"
    r = client.post(
        "/api/chat",
        json={"message": "hello", "enhancedMessage": "Please greet me", "useEnhanced": True},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["response"] == "Hi!"
    assert body["thinking"] is False
    assert body["sessionId"] == "default"
    assert body["history"][-1]["user"] == "hello"
    assert body["history"][-1]["assistant"] == "Hi!"
    assert "durationMs" in body
    assert fake_backend.requests[-1].prompt.endswith("User: Please greet me\nAssistant:")
    assert len(session_store.history("default")) == 1


def test_buffered_chat_uses_session_instructions_and_attachments(client, fake_backend):
    client.post(
        "/api/sessions",
        json={
            "name": "Docs",
            "instructions": "Answer from the notes.",
            "attachments": [{"name": "notes.md", "content": "The sky is green."}],
        },
    )
    r = client.post(
        "/api/chat",
        json={
            "message": "What colour is the sky?",
            "sessionId": "docs",
            "attachments": [{"name": "extra.txt", "content": "Ephemeral."}],
        },
    )
    assert r.status_code == 200
    prompt = fake_backend.requests[-1].prompt
    assert prompt.startswith("Answer from the notes.\n\nAttachment (notes.md):\nThe sky is green.")
    assert "Attachment (extra.txt):\nEphemeral." in prompt
    # The ephemeral attachment is not stored on the session.
    stored = client.get("/api/sessions/docs").json()["session"]
    assert [a["name"] for a in stored["attachments"]] == ["notes.md"]
    assert client.get("/api/sessions").json()["activeSessionId"] == "docs"


def test_buffered_chat_unreachable_leaves_history_unchanged(client, fake_backend, session_store):
    fake_backend.probe_error = unreachable()
    r = client.post("/api/chat", json={"message": "hello"})
    assert r.status_code == 503
    body = r.json()
    assert body["kind"] == "backend_unreachable"
    assert body["error"] == "Cannot connect to Ollama service. Is the Ollama service running?"
    assert body["history"] == []
    assert body["sessionId"] == "default"
    assert fake_backend.requests == []
    assert session_store.history("default") == []


def test_buffered_chat_model_not_found(client, fake_backend):
    fake_backend.generate_error = GenerationError.model_not_found("ghost")
    r = client.post("/api/chat", json={"message": "hello", "model": "ghost"})
    assert r.status_code == 404
    assert r.json()["kind"] == "model_not_found"


def test_blank_message_is_rejected(client):
    assert client.post("/api/chat", json={"message": "   "}).status_code == 422
    assert client.post("/api/chat/stream", json={}).status_code == 422


def test_stream_chat_events_and_history(client, fake_backend, session_store):
    fake_backend.fragments = ["Hel", "lo"]
    r = client.post("/api/chat/stream", json={"message": "hi"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["x-accel-buffering"] == "no"
    events = _sse_events(r.text)
    assert [e["token"] for e in events if "token" in e] == ["Hel", "lo"]
    assert events[-1]["done"] is True
    assert events[-1]["response"] == "Hello"
    assert len(session_store.history("default")) == 1


def test_stream_chat_upstream_error(client, fake_backend, session_store):
    fake_backend.upstream_error = "boom"
    events = _sse_events(client.post("/api/chat/stream", json={"message": "hi"}).text)
    assert events[-1] == {"error": "boom", "kind": "backend_error"}
    assert session_store.history("default") == []


def test_history_get_and_clear(client, session_store):
    client.post("/api/chat", json={"message": "one"})
    client.post("/api/chat", json={"message": "two"})
    r = client.get("/api/history", params={"sessionId": "default"})
    assert [h["user"] for h in r.json()["history"]] == ["one", "two"]

    r = client.delete("/api/history")
    assert r.json() == {"sessionId": "default", "history": []}
    assert session_store.history("default") == []


def test_include_history_false_sends_no_context(client, fake_backend):
    client.post("/api/chat", json={"message": "remember 42"})
    client.post("/api/chat", json={"message": "what number?", "includeHistory": False})
    assert "remember 42" not in fake_backend.requests[-1].prompt


def test_settings_round_trip(client):
    r = client.get("/api/settings")
    body = r.json()
    assert body["defaults"]["maxHistory"] == 20
    assert body["current"]["apiEndpoint"] == "http://127.0.0.1:11434"

    r = client.post(
        "/api/settings",
        json={"model": "llama3:8b", "maxHistory": "5", "theme": "", "backendBaseUrl": "/proxy"},
    )
    current = r.json()["current"]
    assert current["model"] == "llama3:8b"
    assert current["maxHistory"] == 5
    assert current["theme"] == "system"
    assert current["backendBaseUrl"] == "http://localhost:3000/proxy/"

    r = client.post("/api/settings", json={"maxHistory": -3, "backendBaseUrl": "ftp://nope"})
    current = r.json()["current"]
    assert current["maxHistory"] == 5
    assert current["backendBaseUrl"] == "http://localhost:3000/proxy/"


def test_models_listing(client, fake_backend):
    r = client.get("/api/models")
    assert r.status_code == 200
    assert r.json()["models"][0] == {
        "name": "qwen3:1.7B",
        "size": 1_400_000_000,
        "digest": "sha256:abc",
        "modifiedAt": "2024-05-01T10:00:00Z",
    }
    fake_backend.probe_error = unreachable()
    assert client.get("/api/models").status_code == 503


def test_generate_passthrough(client, fake_backend):
    fake_backend.reply = "raw"
    r = client.post("/api/generate", json={"model": "qwen3:1.7B", "prompt": "hi", "options": {"temperature": 0}})
    assert r.status_code == 200
    assert r.json()["response"] == "raw"
    assert fake_backend.requests[-1].extra == {"options": {"temperature": 0}}

    fake_backend.fragments = ["a", "b"]
    r = client.post("/api/generate", json={"model": "qwen3:1.7B", "prompt": "hi", "stream": True})
    events = _sse_events(r.text)
    assert [e["response"] for e in events] == ["a", "b", ""]
    assert events[-1]["done"] is True

    assert client.post("/api/generate", json={"prompt": "no model"}).status_code == 422


def test_store_reads_run_on_the_event_loop(client, session_store, key_store, monkeypatch):
    seen = []

    def on_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def spy(method):
        def wrapper(*args, **kwargs):
            seen.append((method.__name__, on_loop()))
            return method(*args, **kwargs)

        return wrapper

    for name in ("ensure", "history", "list", "get"):
        monkeypatch.setattr(session_store, name, spy(getattr(session_store, name)))
    monkeypatch.setattr(key_store, "list", spy(key_store.list))

    assert client.get("/api/history", params={"sessionId": "ghost"}).status_code == 200
    assert client.get("/api/sessions").status_code == 200
    assert client.get("/api/sessions/default").status_code == 200
    assert client.get("/api/health").status_code == 200
    assert client.get("/api/keys").status_code == 200

    assert {name for name, _ in seen} >= {"ensure", "list", "get"}
    assert all(ok for _, ok in seen), seen
