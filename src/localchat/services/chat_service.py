from __future__ import annotations

"""One chat turn: resolve the session, build the prompt, call the backend.

``prepare()`` does everything that happens before the backend is contacted
and is shared by the buffered path (``buffered_turn``) and the streaming
controller. History is written only by ``record()``, after a complete reply.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List, Optional

from ..config import AppConfig, RuntimeSettingsStore
from ..domain.chat_models import DEFAULT_SESSION_ID, ChatRequest, ChatResponse, HistoryEntry
from ..domain.errors import GenerationError
from ..infrastructure.session_store import SessionStore
from ..observability.metrics import record_outcome
from .attachments import sanitize_attachments
from .backends import GenerationRequest
from .cancellation import CancelToken
from .connectivity import ConnectivityGuard
from .prompt_builder import compose_prompt, select_history
from .relay import GenerationRelay


logger = logging.getLogger(__name__)

INSTRUCTIONS_PREVIEW_LIMIT = 200


@dataclass
class PreparedTurn:
    session_id: str
    message: str
    prompt: str
    model: str
    endpoint: str
    instructions: str
    preset_id: Optional[str]

    def generation_request(self) -> GenerationRequest:
        return GenerationRequest(model=self.model, prompt=self.prompt, endpoint=self.endpoint)


class ChatService:
    def __init__(
        self,
        store: SessionStore,
        settings: RuntimeSettingsStore,
        guard: ConnectivityGuard,
        relay: GenerationRelay,
        config: AppConfig,
    ) -> None:
        self.store = store
        self.settings = settings
        self.guard = guard
        self.relay = relay
        self.config = config

    async def prepare(self, req: ChatRequest) -> PreparedTurn:
        current = self.settings.current
        session_id = req.session_id or self.store.active_session_id or DEFAULT_SESSION_ID
        session = self.store.ensure(session_id)
        if self.store.active_session_id != session_id:
            await self.store.select_active(session_id)

        instructions = req.instructions or session.instructions or current.system_instructions
        attachments = sanitize_attachments(
            list(session.attachments) + list(req.attachments or []),
            max_attachments=self.config.max_attachments,
            char_limit=self.config.attachment_char_limit,
        )
        history = select_history(session.history, current.max_history, req.include_history)
        prompt = compose_prompt(
            req.prompt_message(),
            instructions,
            attachments,
            history,
            include_history=req.include_history,
        )
        return PreparedTurn(
            session_id=session_id,
            message=req.message,
            prompt=prompt,
            model=req.model or current.model,
            endpoint=req.api_endpoint or current.api_endpoint,
            instructions=instructions,
            preset_id=session.preset_id,
        )

    def build_entry(self, turn: PreparedTurn, assistant: str, duration_ms: int) -> HistoryEntry:
        return HistoryEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            user=turn.message,
            assistant=assistant,
            model=turn.model,
            endpoint=turn.endpoint,
            session_id=turn.session_id,
            preset_id=turn.preset_id,
            instructions=turn.instructions[:INSTRUCTIONS_PREVIEW_LIMIT] if turn.instructions else None,
            duration_ms=duration_ms,
        )

    async def record(self, turn: PreparedTurn, assistant: str, duration_ms: int) -> List[HistoryEntry]:
        return await self.store.push_history(turn.session_id, self.build_entry(turn, assistant, duration_ms))

    def history(self, session_id: str) -> List[HistoryEntry]:
        return self.store.history(session_id)

    async def buffered_turn(self, turn: PreparedTurn, token: Optional[CancelToken] = None) -> ChatResponse:
        """Raises ``GenerationError``; history is untouched on failure."""
        started = time.perf_counter()
        try:
            probe = self.guard.ensure_reachable(turn.endpoint)
            await (token.run(probe) if token is not None else probe)
            completion = await self.relay.generate(turn.generation_request(), token)
            if token is not None and token.cancelled:
                raise token.error()
        except GenerationError as exc:
            record_outcome("buffered", exc.kind.value)
            logger.warning(
                "chat_turn_failed",
                extra={"session_id": turn.session_id, "kind": exc.kind.value, "err": exc.message},
            )
            raise
        duration_ms = int((time.perf_counter() - started) * 1000)
        history = await self.record(turn, completion.text, duration_ms)
        record_outcome("buffered", "completed")
        logger.info("chat_turn_completed", extra={"session_id": turn.session_id, "duration_ms": duration_ms})
        return ChatResponse(
            response=completion.text,
            history=history,
            duration_ms=duration_ms,
            session_id=turn.session_id,
        )
