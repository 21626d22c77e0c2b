from __future__ import annotations

"""Typed failures shared by the store, the relay and the API surface.

Backend failures are classified once, by the layer that observes them
(socket, HTTP status, payload or subprocess exit), and travel upward as a
``GenerationError`` carrying an ``ErrorKind``.
"""

from enum import Enum
from typing import Any, Dict, Optional


BACKEND_UNREACHABLE_MESSAGE = "Cannot connect to Ollama service. Is the Ollama service running?"


class ErrorKind(str, Enum):
    BACKEND_UNREACHABLE = "backend_unreachable"
    MODEL_NOT_FOUND = "model_not_found"
    TIMEOUT = "timeout"
    MALFORMED_UPSTREAM_PAYLOAD = "malformed_upstream_payload"
    CLIENT_ABORTED = "client_aborted"
    BACKEND_ERROR = "backend_error"


_HTTP_STATUS = {
    ErrorKind.BACKEND_UNREACHABLE: 503,
    ErrorKind.MODEL_NOT_FOUND: 404,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.MALFORMED_UPSTREAM_PAYLOAD: 502,
    ErrorKind.CLIENT_ABORTED: 499,
    ErrorKind.BACKEND_ERROR: 502,
}

_DEFAULT_MESSAGES = {
    ErrorKind.BACKEND_UNREACHABLE: BACKEND_UNREACHABLE_MESSAGE,
    ErrorKind.MODEL_NOT_FOUND: "Model not found on the Ollama backend",
    ErrorKind.TIMEOUT: "Ollama response timed out",
    ErrorKind.MALFORMED_UPSTREAM_PAYLOAD: "Ollama returned an unexpected response",
    ErrorKind.CLIENT_ABORTED: "Request aborted by the client",
    ErrorKind.BACKEND_ERROR: "Failed to get response from Ollama",
}


class GenerationError(Exception):
    def __init__(self, kind: ErrorKind, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind.value}

    @classmethod
    def unreachable(cls) -> "GenerationError":
        return cls(ErrorKind.BACKEND_UNREACHABLE, BACKEND_UNREACHABLE_MESSAGE)

    @classmethod
    def model_not_found(cls, model: str) -> "GenerationError":
        return cls(
            ErrorKind.MODEL_NOT_FOUND,
            f"Model '{model}' not found. Please pull the model with 'ollama pull {model}'",
        )

    @classmethod
    def timeout(cls, message: Optional[str] = None) -> "GenerationError":
        return cls(ErrorKind.TIMEOUT, message)

    @classmethod
    def malformed(cls, message: Optional[str] = None) -> "GenerationError":
        return cls(ErrorKind.MALFORMED_UPSTREAM_PAYLOAD, message)

    @classmethod
    def aborted(cls) -> "GenerationError":
        return cls(ErrorKind.CLIENT_ABORTED)


class ProtectedResourceError(Exception):
    """Raised when an operation would remove the reserved default session."""


class SessionNotFoundError(KeyError):
    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session '{self.session_id}' not found"


class SessionExistsError(ValueError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' already exists")
        self.session_id = session_id
