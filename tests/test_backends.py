import json

import httpx
import pytest

from localchat.domain.errors import ErrorKind, GenerationError
from localchat.services.backends import (
    GenerationRequest,
    OllamaHttpBackend,
    _classify_process_failure,
    completion_from_payload,
    parse_ollama_list,
)

ENDPOINT = "http://ollama.test:11434"


def _backend(handler) -> OllamaHttpBackend:
    return OllamaHttpBackend(connect_timeout=1.0, transport=httpx.MockTransport(handler))


def _request(model: str = "qwen3:1.7B") -> GenerationRequest:
    return GenerationRequest(model=model, prompt="User: hi\nAssistant:", endpoint=ENDPOINT)


@pytest.mark.asyncio
async def test_generate_posts_prompt_and_returns_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"model": "qwen3:1.7B", "response": "Hi there", "done": True})

    completion = await _backend(handler).generate(_request())
    assert completion.text == "Hi there"
    assert seen["url"] == f"{ENDPOINT}/api/generate"
    assert seen["body"] == {"model": "qwen3:1.7B", "prompt": "User: hi\nAssistant:", "stream": False}


@pytest.mark.asyncio
async def test_generate_404_names_missing_model():
    backend = _backend(lambda request: httpx.Response(404, json={"error": "model not found"}))
    with pytest.raises(GenerationError) as err:
        await backend.generate(_request("llama9"))
    assert err.value.kind is ErrorKind.MODEL_NOT_FOUND
    assert "ollama pull llama9" in err.value.message


@pytest.mark.asyncio
async def test_generate_other_status_is_backend_error():
    backend = _backend(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(GenerationError) as err:
        await backend.generate(_request())
    assert err.value.kind is ErrorKind.BACKEND_ERROR
    assert "status: 500" in err.value.message


@pytest.mark.asyncio
async def test_success_status_without_completion_field_is_malformed():
    backend = _backend(lambda request: httpx.Response(200, json={"model": "m", "done": True}))
    with pytest.raises(GenerationError) as err:
        await backend.generate(_request())
    assert err.value.kind is ErrorKind.MALFORMED_UPSTREAM_PAYLOAD

    backend = _backend(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(GenerationError) as err:
        await backend.generate(_request())
    assert err.value.kind is ErrorKind.MALFORMED_UPSTREAM_PAYLOAD


@pytest.mark.asyncio
async def test_transport_failures_are_classified():
    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    def slow(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(GenerationError) as err:
        await _backend(refused).generate(_request())
    assert err.value.kind is ErrorKind.BACKEND_UNREACHABLE

    with pytest.raises(GenerationError) as err:
        await _backend(slow).generate(_request())
    assert err.value.kind is ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_probe_hits_tags_and_fails_as_unreachable():
    paths = []

    def ok(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"models": []})

    await _backend(ok).probe(ENDPOINT)
    assert paths == ["/api/tags"]

    with pytest.raises(GenerationError) as err:
        await _backend(lambda request: httpx.Response(503)).probe(ENDPOINT)
    assert err.value.kind is ErrorKind.BACKEND_UNREACHABLE


@pytest.mark.asyncio
async def test_list_models_maps_fields():
    payload = {"models": [{"name": "qwen3:1.7B", "size": 10, "digest": "d1", "modified_at": "2024-01-01"}]}
    models = await _backend(lambda request: httpx.Response(200, json=payload)).list_models(ENDPOINT)
    assert models[0].model_dump(by_alias=True) == {
        "name": "qwen3:1.7B",
        "size": 10,
        "digest": "d1",
        "modifiedAt": "2024-01-01",
    }


@pytest.mark.asyncio
async def test_stream_handles_split_lines_and_stops_at_done():
    async def body():
        yield b'{"response": "Hel'
        yield b'lo", "done": false}\n{"response": " world", "done": false}\n'
        yield b'{"response": "", "done": true}\n{"response": "IGNORED", "done": false}\n'

    backend = _backend(lambda request: httpx.Response(200, content=body()))
    events = [event async for event in backend.stream(_request())]
    assert [e.text for e in events] == ["Hello", " world", ""]
    assert events[-1].done is True


@pytest.mark.asyncio
async def test_stream_surfaces_error_field_and_missing_done():
    backend = _backend(lambda request: httpx.Response(200, content=b'{"error": "out of memory"}\n'))
    events = [event async for event in backend.stream(_request())]
    assert events[-1].error == "out of memory"

    backend = _backend(lambda request: httpx.Response(200, content=b'{"response": "cut", "done": false}\n'))
    with pytest.raises(GenerationError) as err:
        async for _ in backend.stream(_request()):
            pass
    assert err.value.kind is ErrorKind.MALFORMED_UPSTREAM_PAYLOAD
    assert err.value.message == "Stream ended unexpectedly"


@pytest.mark.asyncio
async def test_stream_404_is_model_not_found():
    backend = _backend(lambda request: httpx.Response(404, json={"error": "no such model"}))
    with pytest.raises(GenerationError) as err:
        async for _ in backend.stream(_request("ghost")):
            pass
    assert err.value.kind is ErrorKind.MODEL_NOT_FOUND


def test_completion_payload_error_field():
    with pytest.raises(GenerationError) as err:
        completion_from_payload({"error": "bad things"})
    assert err.value.kind is ErrorKind.BACKEND_ERROR
    assert completion_from_payload({"response": ""}).text == ""


def test_process_failure_classification():
    assert _classify_process_failure("Error: connection refused", 1, "m").kind is ErrorKind.BACKEND_UNREACHABLE
    assert _classify_process_failure("Error: pull model manifest: file does not exist: not found", 1, "m").kind is (
        ErrorKind.MODEL_NOT_FOUND
    )
    assert _classify_process_failure("", 127, "m").kind is ErrorKind.BACKEND_ERROR
    generic = _classify_process_failure("", 3, "m")
    assert generic.kind is ErrorKind.BACKEND_ERROR
    assert generic.message == "Ollama exited with code 3"


def test_parse_ollama_list_skips_header():
    output = (
        "NAME            ID              SIZE      MODIFIED\n"
        "qwen3:1.7B      8f68893c685c    1.4 GB    2 days ago\n"
        "llama3:8b       365c0bd3c000    4.7 GB    3 weeks ago\n"
    )
    models = parse_ollama_list(output)
    assert [m.name for m in models] == ["qwen3:1.7B", "llama3:8b"]
    assert models[0].digest == "8f68893c685c"
