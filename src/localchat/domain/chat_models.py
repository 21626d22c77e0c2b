from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


DEFAULT_SESSION_ID = "default"


class WireModel(BaseModel):
    """camelCase on the wire and on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


AttachmentType = Literal["text", "file"]


class Attachment(WireModel):
    id: str
    name: str
    type: AttachmentType = "text"
    content: str


class AttachmentRef(WireModel):
    id: str
    name: str
    type: AttachmentType = "text"


class HistoryEntry(WireModel):
    id: str
    timestamp: str
    user: str
    assistant: str
    model: str
    endpoint: str
    session_id: str
    preset_id: Optional[str] = None
    instructions: Optional[str] = None
    duration_ms: Optional[int] = None


class Session(WireModel):
    id: str
    name: str
    instructions: str = ""
    preset_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    created_at: str
    updated_at: str


class SessionSummary(WireModel):
    id: str
    name: str
    instructions: str
    preset_id: Optional[str] = None
    attachments: List[AttachmentRef]
    history_length: int
    created_at: str
    updated_at: str


class SessionCreate(WireModel):
    id: Optional[str] = None
    name: Optional[str] = None
    instructions: Optional[str] = None
    preset_id: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None


class SessionUpdate(WireModel):
    name: Optional[str] = None
    instructions: Optional[str] = None
    preset_id: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None


class SessionEnvelope(WireModel):
    session: Session


class SessionListResponse(WireModel):
    sessions: List[SessionSummary]
    active_session_id: str


class ActiveSessionResponse(WireModel):
    active_session_id: str


class HistoryResponse(WireModel):
    session_id: str
    history: List[HistoryEntry]


class ChatRequest(WireModel):
    message: str
    enhanced_message: Optional[str] = None
    use_enhanced: bool = False
    model: Optional[str] = None
    instructions: Optional[str] = None
    api_endpoint: Optional[str] = None
    include_history: bool = True
    session_id: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None

    @field_validator("message")
    @classmethod
    def _message_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Message is required")
        return value

    def prompt_message(self) -> str:
        """The text sent to the backend; history always keeps ``message``."""
        if self.use_enhanced and self.enhanced_message and self.enhanced_message.strip():
            return self.enhanced_message
        return self.message


class ChatResponse(WireModel):
    thinking: bool = False
    response: str
    history: List[HistoryEntry]
    duration_ms: int
    session_id: str


class GenerateRequest(BaseModel):
    """Direct pass-through body for ``/api/generate`` (Ollama field names)."""

    model: str
    prompt: str = ""
    stream: bool = False
    system: Optional[str] = None
    template: Optional[str] = None
    options: Optional[Dict[str, Any]] = None
    images: Optional[List[str]] = None

    @field_validator("model")
    @classmethod
    def _model_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Model is required")
        return value

    def extra_fields(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("system", self.system),
                ("template", self.template),
                ("options", self.options),
                ("images", self.images),
            )
            if value is not None
        }


class ModelInfo(WireModel):
    name: str
    size: Optional[int] = None
    digest: Optional[str] = None
    modified_at: Optional[str] = None


class ModelListResponse(WireModel):
    models: List[ModelInfo]
