from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send


logger = logging.getLogger(__name__)

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class EventStreamResponse(StreamingResponse):
    """``text/event-stream`` response that always runs ``on_close``.

    ``on_close`` fires when the response ends for any reason, including the
    client dropping the connection mid-stream.
    """

    def __init__(
        self,
        content: AsyncIterator[str],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(content, media_type="text/event-stream", headers={**SSE_HEADERS, **(headers or {})})
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as exc:
            logger.warning("sse_write_failed", extra={"err": str(exc)})
        finally:
            if self._on_close is not None:
                await self._on_close()
