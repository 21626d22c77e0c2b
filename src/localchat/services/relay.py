from __future__ import annotations

"""Buffered and streamed generation calls with one timeout policy.

Buffered calls are bounded by ``generation_timeout``; streamed calls by
``stream_timeout`` (``None`` = no overall deadline, the client disconnect is
then the only thing that stops a live stream). Everything that leaves this
module is either a result or a ``GenerationError``.
"""

import logging
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import httpx

from ..domain.errors import ErrorKind, GenerationError
from .backends import Completion, GenerationBackend, GenerationRequest, StreamEvent
from .cancellation import CancelToken
from .streaming import next_or_none


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _translated(awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except GenerationError:
        raise
    except httpx.TimeoutException as exc:
        raise GenerationError.timeout() from exc
    except (httpx.HTTPError, OSError) as exc:
        logger.warning("relay_transport_error", extra={"err": repr(exc)})
        raise GenerationError.unreachable() from exc
    except ValueError as exc:
        logger.error("relay_payload_error", extra={"err": repr(exc)})
        raise GenerationError.malformed() from exc


class GenerationRelay:
    def __init__(
        self,
        backend: GenerationBackend,
        generation_timeout: Optional[float] = 600.0,
        stream_timeout: Optional[float] = None,
    ) -> None:
        self.backend = backend
        self.generation_timeout = generation_timeout
        self.stream_timeout = stream_timeout

    async def generate(self, request: GenerationRequest, token: Optional[CancelToken] = None) -> Completion:
        owned = token is None
        token = token or CancelToken()
        token.cancel_after(self.generation_timeout, "Ollama response timed out")
        try:
            return await token.run(_translated(self.backend.generate(request)))
        finally:
            token.disarm()
            if owned:
                token.close()

    async def stream(self, request: GenerationRequest, token: CancelToken) -> AsyncIterator[StreamEvent]:
        """Yield fragments up to and including the terminal event.

        An upstream error field raises instead of yielding; nothing after the
        terminal marker is read.
        """
        token.cancel_after(self.stream_timeout, "Ollama stream timed out")
        events = self.backend.stream(request)
        try:
            while True:
                event = await token.run(_translated(next_or_none(events)))
                if event is None:
                    raise GenerationError.malformed("Stream ended unexpectedly")
                if event.error:
                    logger.warning("upstream_stream_error", extra={"model": request.model, "err": event.error})
                    raise GenerationError(ErrorKind.BACKEND_ERROR, event.error)
                yield event
                if event.done:
                    return
        finally:
            token.disarm()
            await events.aclose()
