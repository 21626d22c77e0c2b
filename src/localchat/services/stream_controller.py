from __future__ import annotations

"""SSE controller for one streaming chat turn.

States::

    Initiating -> ConnectivityChecked -> UpstreamRequested -> Relaying
        -> Finalizing -> Completed
    (any non-terminal state) -> Failed | Aborted

Wire events (``data:`` lines, JSON):

- ``{"token": <fragment>, "response": <aggregate so far>}`` per fragment
- ``{"done": true, "response", "history", "durationMs", "sessionId"}`` once, on success
- ``{"error": <message>, "kind": <ErrorKind>}`` once, on failure

Comment lines (``: ...``) open the stream and serve as heartbeats. History is
written only in Finalizing; a failed or aborted turn writes nothing.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from ..domain.errors import ErrorKind, GenerationError
from ..observability.metrics import STREAM_HEARTBEATS, record_outcome
from .backends import StreamEvent
from .cancellation import CancelReason, CancelToken
from .chat_service import ChatService, PreparedTurn
from .streaming import format_sse, heartbeat_frame, next_or_none, sse_comment


logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    INITIATING = "initiating"
    CONNECTIVITY_CHECKED = "connectivity_checked"
    UPSTREAM_REQUESTED = "upstream_requested"
    RELAYING = "relaying"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({StreamState.COMPLETED, StreamState.FAILED, StreamState.ABORTED})


class StreamingChatTurn:
    def __init__(
        self,
        service: ChatService,
        turn: PreparedTurn,
        heartbeat_interval: float = 15.0,
        token: Optional[CancelToken] = None,
        on_complete: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self.service = service
        self.turn = turn
        self.heartbeat_interval = heartbeat_interval
        self.token = token or CancelToken()
        self.on_complete = on_complete
        self.state = StreamState.INITIATING
        self._agen: Optional[AsyncIterator[str]] = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: StreamState) -> None:
        if self.finished:
            return
        logger.debug(
            "stream_state_transition",
            extra={"session_id": self.turn.session_id, "from": self.state.value, "to": state.value},
        )
        self.state = state
        if state in TERMINAL_STATES:
            record_outcome("stream", state.value)

    def events(self) -> AsyncIterator[str]:
        if self._agen is None:
            self._agen = self._run()
        return self._agen

    def abort(self) -> None:
        """Client went away: cancel the upstream call now, without awaiting."""
        if self.finished:
            return
        self.token.cancel(CancelReason.CLIENT_DISCONNECTED)
        self._transition(StreamState.ABORTED)
        logger.info("stream_aborted_by_client", extra={"session_id": self.turn.session_id})

    async def aclose(self) -> None:
        if self._agen is not None:
            await self._agen.aclose()  # type: ignore[attr-defined]
        self.token.close()

    async def _run(self) -> AsyncIterator[str]:
        started = time.perf_counter()
        fragments: List[str] = []
        stream: Optional[AsyncIterator[StreamEvent]] = None
        pending: Optional[asyncio.Future] = None

        yield sse_comment("stream-open")
        try:
            try:
                await self.token.run(self.service.guard.ensure_reachable(self.turn.endpoint))
                self._transition(StreamState.CONNECTIVITY_CHECKED)

                stream = self.service.relay.stream(self.turn.generation_request(), self.token)
                self._transition(StreamState.UPSTREAM_REQUESTED)
                loop = asyncio.get_running_loop()
                next_heartbeat = loop.time() + self.heartbeat_interval
                while True:
                    if pending is None:
                        pending = asyncio.ensure_future(next_or_none(stream))
                    done, _ = await asyncio.wait({pending}, timeout=max(0.0, next_heartbeat - loop.time()))
                    # Fixed cadence, whether or not tokens are flowing.
                    if loop.time() >= next_heartbeat:
                        next_heartbeat = loop.time() + self.heartbeat_interval
                        STREAM_HEARTBEATS.inc()
                        yield heartbeat_frame()
                    if not done:
                        continue
                    task, pending = pending, None
                    event = task.result()
                    if event is None:
                        raise GenerationError.malformed("Stream ended unexpectedly")
                    self._transition(StreamState.RELAYING)
                    if event.text:
                        fragments.append(event.text)
                        yield format_sse({"token": event.text, "response": "".join(fragments)})
                    if event.done:
                        break

                self._transition(StreamState.FINALIZING)
                response = "".join(fragments)
                duration_ms = int((time.perf_counter() - started) * 1000)
                history = await self.service.record(self.turn, response, duration_ms)
                self._transition(StreamState.COMPLETED)
                logger.info(
                    "stream_turn_completed",
                    extra={"session_id": self.turn.session_id, "duration_ms": duration_ms},
                )
                if self.on_complete is not None:
                    await self.on_complete()
                yield format_sse(
                    {
                        "done": True,
                        "response": response,
                        "history": [h.model_dump(by_alias=True) for h in history],
                        "durationMs": duration_ms,
                        "sessionId": self.turn.session_id,
                    }
                )
            except GenerationError as exc:
                if exc.kind is ErrorKind.CLIENT_ABORTED or self.state is StreamState.ABORTED:
                    self._transition(StreamState.ABORTED)
                    return
                self._transition(StreamState.FAILED)
                logger.warning(
                    "stream_turn_failed",
                    extra={"session_id": self.turn.session_id, "kind": exc.kind.value, "err": exc.message},
                )
                yield format_sse(exc.to_payload())
        except (asyncio.CancelledError, GeneratorExit):
            self.abort()
            raise
        finally:
            try:
                await self._release(pending, stream)
            finally:
                self.token.close()

    @staticmethod
    async def _release(pending: Optional[asyncio.Future], stream: Optional[AsyncIterator[StreamEvent]]) -> None:
        if pending is not None:
            if not pending.done():
                pending.cancel()
            await asyncio.wait({pending})
            if not pending.cancelled():
                pending.exception()
        if stream is not None:
            await stream.aclose()  # type: ignore[attr-defined]
