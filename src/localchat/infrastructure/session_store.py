from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from ..config import DEFAULT_ATTACHMENT_CHAR_LIMIT, DEFAULT_MAX_ATTACHMENTS, DEFAULT_SYSTEM_INSTRUCTIONS, get_config
from ..domain.chat_models import (
    DEFAULT_SESSION_ID,
    AttachmentRef,
    HistoryEntry,
    Session,
    SessionCreate,
    SessionSummary,
    SessionUpdate,
)
from ..domain.errors import ProtectedResourceError, SessionExistsError, SessionNotFoundError
from ..services.attachments import sanitize_attachments
from .json_storage import JsonDocumentFile


logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Default Session"


class SessionStore(Protocol):
    @property
    def active_session_id(self) -> str: ...

    def ensure(self, session_id: Optional[str] = None) -> Session: ...

    def get(self, session_id: str) -> Session: ...

    def list(self) -> List[SessionSummary]: ...

    def count(self) -> int: ...

    def history(self, session_id: Optional[str] = None) -> List[HistoryEntry]: ...

    async def create(self, payload: SessionCreate) -> Session: ...

    async def update(self, session_id: str, payload: SessionUpdate) -> Session: ...

    async def delete(self, session_id: str) -> bool: ...

    async def select_active(self, session_id: str) -> str: ...

    async def push_history(self, session_id: str, entry: HistoryEntry) -> List[HistoryEntry]: ...

    async def clear_history(self, session_id: str) -> List[HistoryEntry]: ...

    def to_document(self) -> Dict[str, Any]: ...


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class InMemorySessionStore:
    """Keyed Session map plus the active pointer.

    Every mutating coroutine ends with ``_save()``; this class keeps nothing on
    disk, ``FileSessionStore`` overrides the hooks.
    """

    def __init__(
        self,
        default_instructions: str = DEFAULT_SYSTEM_INSTRUCTIONS,
        *,
        max_attachments: int = DEFAULT_MAX_ATTACHMENTS,
        attachment_char_limit: int = DEFAULT_ATTACHMENT_CHAR_LIMIT,
    ) -> None:
        self._default_instructions = default_instructions
        self._max_attachments = max_attachments
        self._attachment_char_limit = attachment_char_limit
        self._sessions: Dict[str, Session] = {}
        self._active_session_id: str = DEFAULT_SESSION_ID
        self._reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _reset(self) -> None:
        self._sessions = {DEFAULT_SESSION_ID: self._default_session()}
        self._active_session_id = DEFAULT_SESSION_ID

    def _default_session(self) -> Session:
        now = self._now_iso()
        return Session(
            id=DEFAULT_SESSION_ID,
            name=DEFAULT_SESSION_NAME,
            instructions=self._default_instructions,
            created_at=now,
            updated_at=now,
        )

    def _sanitize(self, attachments: Any) -> list:
        return sanitize_attachments(
            attachments,
            max_attachments=self._max_attachments,
            char_limit=self._attachment_char_limit,
        )

    def _normalize(self, raw: Dict[str, Any], session_id: str, fallback_name: str) -> Session:
        now = self._now_iso()
        history: List[HistoryEntry] = []
        raw_history = raw.get("history")
        for item in raw_history if isinstance(raw_history, list) else []:
            try:
                history.append(HistoryEntry.model_validate(item))
            except ValidationError:
                logger.warning("history_entry_dropped_on_load", extra={"session_id": session_id})
        raw_attachments = raw.get("attachments")
        preset = raw.get("presetId", raw.get("preset_id"))
        return Session(
            id=session_id,
            name=raw.get("name") or fallback_name,
            instructions=raw.get("instructions") or "",
            preset_id=str(preset) if preset else None,
            attachments=self._sanitize(raw_attachments if isinstance(raw_attachments, list) else []),
            history=history,
            created_at=raw.get("createdAt") or raw.get("created_at") or now,
            updated_at=raw.get("updatedAt") or raw.get("updated_at") or now,
        )

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _unique_id(self, name: str) -> str:
        slug = slugify(name) or str(uuid.uuid4())
        candidate = slug
        while candidate in self._sessions:
            candidate = f"{slug}-{uuid.uuid4().hex[:8]}"
        return candidate

    def _summary(self, session: Session) -> SessionSummary:
        return SessionSummary(
            id=session.id,
            name=session.name,
            instructions=session.instructions,
            preset_id=session.preset_id,
            attachments=[AttachmentRef(id=a.id, name=a.name, type=a.type) for a in session.attachments],
            history_length=len(session.history),
            created_at=session.created_at,
            updated_at=session.updated_at,
        )

    def load_document(self, document: Dict[str, Any]) -> None:
        sessions: Dict[str, Session] = {}
        raw_sessions = document.get("sessions") if isinstance(document, dict) else None
        if not isinstance(raw_sessions, dict):
            if raw_sessions is not None:
                logger.warning("sessions_document_malformed", extra={"found": type(raw_sessions).__name__})
            raw_sessions = {}
        for sid, raw in raw_sessions.items():
            if not isinstance(raw, dict):
                continue
            try:
                sessions[sid] = self._normalize(raw, sid, raw.get("name") or "Untitled Session")
            except ValidationError as exc:
                logger.warning("session_dropped_on_load", extra={"session_id": sid, "err": str(exc)})
        if DEFAULT_SESSION_ID in sessions:
            existing = sessions[DEFAULT_SESSION_ID]
            if not existing.name:
                existing.name = DEFAULT_SESSION_NAME
        else:
            sessions[DEFAULT_SESSION_ID] = self._default_session()
        self._sessions = sessions
        active = document.get("activeSessionId") if isinstance(document, dict) else None
        self._active_session_id = active if isinstance(active, str) and active in sessions else DEFAULT_SESSION_ID

    def to_document(self) -> Dict[str, Any]:
        return {
            "activeSessionId": self._active_session_id,
            "sessions": {
                sid: session.model_dump(by_alias=True, mode="json")
                for sid, session in self._sessions.items()
            },
        }

    async def _save(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def active_session_id(self) -> str:
        return self._active_session_id

    def ensure(self, session_id: Optional[str] = None) -> Session:
        target = session_id or DEFAULT_SESSION_ID
        session = self._sessions.get(target)
        if session is None:
            if target == DEFAULT_SESSION_ID:
                session = self._default_session()
            else:
                now = self._now_iso()
                session = Session(
                    id=target,
                    name=f"Session {len(self._sessions) + 1}",
                    created_at=now,
                    updated_at=now,
                )
            self._sessions[target] = session
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> Session:
        return self._require(session_id).model_copy(deep=True)

    def list(self) -> List[SessionSummary]:
        return [self._summary(s) for s in self._sessions.values()]

    def count(self) -> int:
        return len(self._sessions)

    def history(self, session_id: Optional[str] = None) -> List[HistoryEntry]:
        return self.ensure(session_id or self._active_session_id).history

    # ------------------------------------------------------------------
    # Mutations (each one persists before returning)
    # ------------------------------------------------------------------
    async def create(self, payload: SessionCreate) -> Session:
        name = (payload.name or "").strip() or f"Session {len(self._sessions)}"
        if payload.id:
            if payload.id in self._sessions:
                raise SessionExistsError(payload.id)
            session_id = payload.id
        else:
            session_id = self._unique_id(name)
        now = self._now_iso()
        session = Session(
            id=session_id,
            name=name,
            instructions=payload.instructions or "",
            preset_id=payload.preset_id,
            attachments=self._sanitize(payload.attachments or []),
            created_at=now,
            updated_at=now,
        )
        self._sessions[session_id] = session
        await self._save()
        logger.info("session_created", extra={"session_id": session_id})
        return session.model_copy(deep=True)

    async def update(self, session_id: str, payload: SessionUpdate) -> Session:
        session = self._require(session_id)
        fields = payload.model_fields_set
        if "name" in fields and payload.name and payload.name.strip():
            session.name = payload.name.strip()
        if "instructions" in fields and payload.instructions is not None:
            session.instructions = payload.instructions
        if "preset_id" in fields:
            session.preset_id = payload.preset_id or None
        if "attachments" in fields and payload.attachments is not None:
            session.attachments = self._sanitize(payload.attachments)
        session.updated_at = self._now_iso()
        await self._save()
        return session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        if session_id == DEFAULT_SESSION_ID:
            raise ProtectedResourceError("Default session cannot be deleted")
        if session_id not in self._sessions:
            return False
        del self._sessions[session_id]
        if self._active_session_id == session_id:
            self._active_session_id = DEFAULT_SESSION_ID
        await self._save()
        logger.info("session_deleted", extra={"session_id": session_id})
        return True

    async def select_active(self, session_id: str) -> str:
        self._require(session_id)
        self._active_session_id = session_id
        await self._save()
        return session_id

    async def push_history(self, session_id: str, entry: HistoryEntry) -> List[HistoryEntry]:
        self.ensure(session_id)
        session = self._sessions[session_id]
        session.history.append(entry)
        session.updated_at = entry.timestamp
        await self._save()
        return [e.model_copy() for e in session.history]

    async def clear_history(self, session_id: str) -> List[HistoryEntry]:
        self.ensure(session_id)
        session = self._sessions[session_id]
        session.history = []
        session.updated_at = self._now_iso()
        await self._save()
        return []


class FileSessionStore(InMemorySessionStore):
    """JSON file-backed store (``{activeSessionId, sessions}``)."""

    def __init__(self, file_path: Path, default_instructions: str = DEFAULT_SYSTEM_INSTRUCTIONS, **limits: int) -> None:
        super().__init__(default_instructions, **limits)
        self._file = JsonDocumentFile(Path(file_path), self._fresh_document)
        self.load_document(self._file.load())

    def _fresh_document(self) -> Dict[str, Any]:
        self._reset()
        return self.to_document()

    async def _save(self) -> None:
        await self._file.write(self.to_document())


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        cfg = get_config()
        _store = FileSessionStore(
            cfg.sessions_file,
            max_attachments=cfg.max_attachments,
            attachment_char_limit=cfg.attachment_char_limit,
        )
    return _store
