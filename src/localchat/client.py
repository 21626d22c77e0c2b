from __future__ import annotations

"""Async HTTP client for a running localchat server.

``send()`` tries the streaming endpoint first and falls back to the buffered
one, with the same request body, when the stream fails. A missing model is reported without a
retry.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Awaitable[None]]

NOT_RETRIED_KINDS = frozenset({"model_not_found"})


@dataclass
class ChatResult:
    response: str
    history: List[Dict[str, Any]] = field(default_factory=list)
    session_id: Optional[str] = None
    duration_ms: Optional[int] = None
    streamed: bool = True


class ChatFailed(Exception):
    def __init__(self, message: str, kind: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class StreamFailed(Exception):
    pass


class LocalChatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> "LocalChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(
        self,
        message: str,
        *,
        on_token: Optional[TokenCallback] = None,
        **fields: Any,
    ) -> ChatResult:
        """Extra keyword fields go into the body verbatim (camelCase names)."""
        payload: Dict[str, Any] = {"message": message, **fields}
        try:
            return await self._stream(payload, on_token)
        except (StreamFailed, httpx.HTTPError) as exc:
            logger.warning("stream_failed_falling_back", extra={"err": str(exc)})
        result = await self.chat(payload)
        result.streamed = False
        return result

    async def chat(self, payload: Dict[str, Any]) -> ChatResult:
        response = await self._client.post("/api/chat", json=payload)
        data = response.json()
        if response.status_code >= 400:
            raise ChatFailed(data.get("error") or str(data), data.get("kind"), response.status_code)
        return ChatResult(
            response=data["response"],
            history=data.get("history", []),
            session_id=data.get("sessionId"),
            duration_ms=data.get("durationMs"),
            streamed=False,
        )

    async def _stream(self, payload: Dict[str, Any], on_token: Optional[TokenCallback]) -> ChatResult:
        async with self._client.stream("POST", "/api/chat/stream", json=payload) as response:
            if response.status_code >= 400:
                raise StreamFailed(f"stream endpoint answered {response.status_code}")
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    event = json.loads(line[len("data:"):].strip())
                except ValueError as exc:
                    raise StreamFailed(f"unreadable event: {line[:200]}") from exc
                if event.get("error"):
                    if event.get("kind") in NOT_RETRIED_KINDS:
                        raise ChatFailed(event["error"], event["kind"], response.status_code)
                    raise StreamFailed(event["error"])
                if event.get("done"):
                    return ChatResult(
                        response=event.get("response", ""),
                        history=event.get("history", []),
                        session_id=event.get("sessionId"),
                        duration_ms=event.get("durationMs"),
                    )
                if event.get("token") and on_token is not None:
                    await on_token(event["token"])
        raise StreamFailed("stream closed before completion")

    async def sessions(self) -> Dict[str, Any]:
        response = await self._client.get("/api/sessions")
        response.raise_for_status()
        return response.json()

    async def history(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        params = {"sessionId": session_id} if session_id else None
        response = await self._client.get("/api/history", params=params)
        response.raise_for_status()
        return response.json()
