from __future__ import annotations

"""Backends that perform the actual text generation.

Two implementations of ``GenerationBackend``:

- ``OllamaHttpBackend`` talks to the Ollama HTTP API (``api/tags`` and
  ``api/generate``) with httpx.
- ``OllamaProcessBackend`` shells out to ``ollama list`` / ``ollama run``.

Each one classifies its failures into ``ErrorKind`` values at the point where
the failure mode is actually known (socket, HTTP status, payload, exit code).
Callers never see raw httpx or OS errors from here.
"""

import asyncio
import codecs
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from ..config import AppConfig, with_trailing_slash
from ..domain.chat_models import ModelInfo
from ..domain.errors import ErrorKind, GenerationError
from .streaming import RAW_LOG_LIMIT, NdjsonDecoder


logger = logging.getLogger("localchat.backend")

OLLAMA_NOT_INSTALLED_MESSAGE = "Ollama command not found. Please ensure Ollama is installed and in your PATH."


@dataclass
class GenerationRequest:
    model: str
    prompt: str
    endpoint: str
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Completion:
    text: str
    raw: Dict[str, Any]


@dataclass
class StreamEvent:
    text: str = ""
    done: bool = False
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StreamEvent":
        fragment = payload.get("response")
        error = payload.get("error")
        return cls(
            text=fragment if isinstance(fragment, str) else "",
            done=bool(payload.get("done")),
            error=str(error) if error else None,
            raw=payload,
        )


class GenerationBackend(Protocol):
    async def probe(self, endpoint: str) -> None: ...

    async def list_models(self, endpoint: str) -> List[ModelInfo]: ...

    async def generate(self, request: GenerationRequest) -> Completion: ...

    def stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]: ...


def _status_error(status_code: int, model: str, streaming: bool = False) -> GenerationError:
    if status_code == 404:
        return GenerationError.model_not_found(model)
    if streaming:
        return GenerationError(ErrorKind.BACKEND_ERROR, "Failed to stream from Ollama")
    return GenerationError(ErrorKind.BACKEND_ERROR, f"Failed to get response from Ollama (status: {status_code})")


def completion_from_payload(payload: Any, raw_text: str = "") -> Completion:
    """Validate a buffered backend reply; a missing completion field is an error."""
    if not isinstance(payload, dict):
        logger.error("backend_payload_not_object", extra={"raw": raw_text[:RAW_LOG_LIMIT]})
        raise GenerationError.malformed()
    if payload.get("error"):
        raise GenerationError(ErrorKind.BACKEND_ERROR, str(payload["error"]))
    text = payload.get("response")
    if not isinstance(text, str):
        logger.error("backend_payload_missing_response", extra={"raw": raw_text[:RAW_LOG_LIMIT]})
        raise GenerationError.malformed()
    return Completion(text=text, raw=payload)


class OllamaHttpBackend:
    def __init__(self, connect_timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.connect_timeout = connect_timeout
        self._transport = transport

    def _client(self, endpoint: str, timeout: httpx.Timeout) -> httpx.AsyncClient:
        # One client per call: nothing pooled outlives the caller's event loop.
        return httpx.AsyncClient(base_url=with_trailing_slash(endpoint), timeout=timeout, transport=self._transport)

    def _generation_timeout(self) -> httpx.Timeout:
        # Overall deadlines belong to the caller's CancelToken.
        return httpx.Timeout(None, connect=self.connect_timeout)

    async def probe(self, endpoint: str) -> None:
        async with self._client(endpoint, httpx.Timeout(self.connect_timeout)) as client:
            try:
                response = await client.get("api/tags")
            except httpx.HTTPError as exc:
                logger.warning("backend_probe_failed", extra={"endpoint": endpoint, "err": repr(exc)})
                raise GenerationError.unreachable() from exc
        if response.status_code >= 400:
            logger.warning("backend_probe_bad_status", extra={"endpoint": endpoint, "status": response.status_code})
            raise GenerationError.unreachable()

    async def list_models(self, endpoint: str) -> List[ModelInfo]:
        async with self._client(endpoint, httpx.Timeout(self.connect_timeout)) as client:
            try:
                response = await client.get("api/tags")
            except httpx.TimeoutException as exc:
                raise GenerationError.timeout() from exc
            except httpx.HTTPError as exc:
                raise GenerationError.unreachable() from exc
        if response.status_code >= 400:
            raise GenerationError(ErrorKind.BACKEND_ERROR, f"Failed to list Ollama models (status: {response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("backend_tags_unparsable", extra={"raw": response.text[:RAW_LOG_LIMIT]})
            raise GenerationError.malformed() from exc
        models = payload.get("models") if isinstance(payload, dict) else None
        return [
            ModelInfo(
                name=m.get("name") or m.get("model") or "",
                size=m.get("size"),
                digest=m.get("digest"),
                modified_at=m.get("modified_at"),
            )
            for m in (models or [])
            if isinstance(m, dict)
        ]

    async def generate(self, request: GenerationRequest) -> Completion:
        body = {"model": request.model, "prompt": request.prompt, "stream": False, **request.extra}
        async with self._client(request.endpoint, self._generation_timeout()) as client:
            try:
                response = await client.post("api/generate", json=body)
            except httpx.TimeoutException as exc:
                raise GenerationError.timeout() from exc
            except httpx.HTTPError as exc:
                logger.warning("backend_generate_transport_error", extra={"err": repr(exc)})
                raise GenerationError.unreachable() from exc
        if response.status_code >= 400:
            logger.warning(
                "backend_generate_bad_status",
                extra={"status": response.status_code, "raw": response.text[:RAW_LOG_LIMIT]},
            )
            raise _status_error(response.status_code, request.model)
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("backend_generate_unparsable", extra={"raw": response.text[:RAW_LOG_LIMIT]})
            raise GenerationError.malformed() from exc
        return completion_from_payload(payload, response.text)

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        body = {"model": request.model, "prompt": request.prompt, "stream": True, **request.extra}
        decoder = NdjsonDecoder()
        async with self._client(request.endpoint, self._generation_timeout()) as client:
            try:
                async with client.stream("POST", "api/generate", json=body) as response:
                    if response.status_code >= 400:
                        raw = (await response.aread()).decode("utf-8", "replace")
                        logger.warning(
                            "backend_stream_bad_status",
                            extra={"status": response.status_code, "raw": raw[:RAW_LOG_LIMIT]},
                        )
                        raise _status_error(response.status_code, request.model, streaming=True)
                    async for chunk in response.aiter_text():
                        for payload in decoder.feed(chunk):
                            event = StreamEvent.from_payload(payload)
                            yield event
                            if event.done or event.error:
                                return
                    for payload in decoder.flush():
                        event = StreamEvent.from_payload(payload)
                        yield event
                        if event.done or event.error:
                            return
            except httpx.TimeoutException as exc:
                raise GenerationError.timeout() from exc
            except httpx.HTTPError as exc:
                logger.warning("backend_stream_transport_error", extra={"err": repr(exc)})
                raise GenerationError.unreachable() from exc
        raise GenerationError.malformed("Stream ended unexpectedly")


def _classify_process_failure(stderr: str, returncode: Optional[int], model: str) -> GenerationError:
    if returncode == 127:
        return GenerationError(ErrorKind.BACKEND_ERROR, OLLAMA_NOT_INSTALLED_MESSAGE)
    message = stderr.strip() or f"Ollama exited with code {returncode}"
    lowered = message.lower()
    if "connection refused" in lowered or "could not connect" in lowered:
        return GenerationError.unreachable()
    if "not found" in lowered or "no modelfile" in lowered:
        return GenerationError.model_not_found(model)
    return GenerationError(ErrorKind.BACKEND_ERROR, message)


def parse_ollama_list(output: str) -> List[ModelInfo]:
    models: List[ModelInfo] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("NAME"):
            continue
        columns = line.split()
        models.append(ModelInfo(name=columns[0], digest=columns[1] if len(columns) > 1 else None))
    return models


class OllamaProcessBackend:
    """Runs ``ollama run <model>`` per request; stdout is the completion."""

    def __init__(self, executable: str = "ollama") -> None:
        self.executable = executable

    def _resolve(self) -> str:
        path = shutil.which(self.executable)
        if path is None:
            raise GenerationError(ErrorKind.BACKEND_ERROR, OLLAMA_NOT_INSTALLED_MESSAGE)
        return path

    def _env(self, endpoint: str) -> Dict[str, str]:
        env = dict(os.environ)
        if endpoint:
            env["OLLAMA_HOST"] = endpoint
        return env

    async def _spawn(self, endpoint: str, *args: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self._resolve(),
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(endpoint),
            )
        except OSError as exc:
            logger.error("ollama_spawn_failed", extra={"err": str(exc)})
            raise GenerationError(ErrorKind.BACKEND_ERROR, f"Failed to communicate with Ollama: {exc}") from exc

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    async def _list(self, endpoint: str) -> str:
        proc = await self._spawn(endpoint, "list")
        try:
            stdout, stderr = await proc.communicate()
        finally:
            await self._terminate(proc)
        if proc.returncode != 0:
            logger.warning("ollama_list_failed", extra={"code": proc.returncode, "stderr": stderr.decode(errors="replace")})
            raise GenerationError.unreachable()
        return stdout.decode("utf-8", "replace")

    async def probe(self, endpoint: str) -> None:
        await self._list(endpoint)

    async def list_models(self, endpoint: str) -> List[ModelInfo]:
        return parse_ollama_list(await self._list(endpoint))

    async def generate(self, request: GenerationRequest) -> Completion:
        proc = await self._spawn(request.endpoint, "run", request.model)
        try:
            stdout, stderr = await proc.communicate(f"{request.prompt}\n".encode("utf-8"))
        finally:
            await self._terminate(proc)
        if proc.returncode != 0:
            raise _classify_process_failure(stderr.decode("utf-8", "replace"), proc.returncode, request.model)
        text = stdout.decode("utf-8", "replace").strip()
        return Completion(text=text, raw={"model": request.model, "response": text, "done": True})

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        proc = await self._spawn(request.endpoint, "run", request.model)
        if proc.stdin is None or proc.stdout is None or proc.stderr is None:
            await self._terminate(proc)
            raise GenerationError(ErrorKind.BACKEND_ERROR, "Failed to communicate with Ollama: missing pipes")
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            proc.stdin.write(f"{request.prompt}\n".encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await proc.stdout.read(1024)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    yield StreamEvent(text=text, raw={"model": request.model, "response": text, "done": False})
            tail = decoder.decode(b"", True)
            if tail:
                yield StreamEvent(text=tail, raw={"model": request.model, "response": tail, "done": False})
            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", "replace")
            if returncode != 0:
                raise _classify_process_failure(stderr, returncode, request.model)
            yield StreamEvent(done=True, raw={"model": request.model, "response": "", "done": True})
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise GenerationError(ErrorKind.BACKEND_ERROR, f"Failed to communicate with Ollama: {exc}") from exc
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            await self._terminate(proc)


def detect_local_model(executable: str = "ollama") -> Optional[str]:
    """First model name printed by ``ollama list``, or None."""
    try:
        result = subprocess.run([executable, "list"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.info("local_model_detection_skipped", extra={"err": str(exc)})
        return None
    if result.returncode != 0 or not result.stdout:
        return None
    models = parse_ollama_list(result.stdout)
    return models[0].name if models else None


def build_backend(config: AppConfig) -> GenerationBackend:
    if config.backend == "process":
        return OllamaProcessBackend()
    return OllamaHttpBackend(connect_timeout=config.connect_timeout)

