from __future__ import annotations

"""Tie a ``CancelToken`` to the lifetime of the inbound HTTP connection.

Used by non-streaming endpoints; SSE responses get the same effect from
``EventStreamResponse.on_close``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from starlette.requests import Request

from ..services.cancellation import CancelReason, CancelToken


logger = logging.getLogger(__name__)


async def _wait_for_disconnect(request: Request, token: CancelToken) -> None:
    # The body has been read by the time the endpoint runs, so the next
    # message is the disconnect.
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            if token.cancel(CancelReason.CLIENT_DISCONNECTED):
                logger.info("client_disconnected", extra={"path": request.url.path})
            return


@asynccontextmanager
async def cancel_on_disconnect(request: Request, token: Optional[CancelToken] = None) -> AsyncIterator[CancelToken]:
    token = token or CancelToken()
    watcher = asyncio.ensure_future(_wait_for_disconnect(request, token))
    try:
        yield token
    finally:
        if not watcher.done():
            watcher.cancel()
        await asyncio.wait({watcher})
        if not watcher.cancelled() and watcher.exception() is not None:
            logger.debug("disconnect_watcher_failed", extra={"err": repr(watcher.exception())})
        token.close()
