from __future__ import annotations

"""Bounding of user-supplied context blobs before they reach a prompt."""

import uuid
from typing import Any, Iterable, List, Mapping, Optional

from ..config import DEFAULT_ATTACHMENT_CHAR_LIMIT, DEFAULT_MAX_ATTACHMENTS
from ..domain.chat_models import Attachment


ATTACHMENT_NAME_LIMIT = 120


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def sanitize_attachments(
    raw_attachments: Optional[Iterable[Any]],
    *,
    max_attachments: int = DEFAULT_MAX_ATTACHMENTS,
    char_limit: int = DEFAULT_ATTACHMENT_CHAR_LIMIT,
) -> List[Attachment]:
    """Drop entries without string content, cap count and sizes, coerce type.

    Sanitizing an already sanitized list returns an equal list.
    """
    if raw_attachments is None or isinstance(raw_attachments, (str, bytes, Mapping)):
        return []

    out: List[Attachment] = []
    for raw in raw_attachments:
        if len(out) >= max_attachments:
            break
        if raw is None:
            continue
        content = _field(raw, "content")
        if not isinstance(content, str):
            continue
        name = _field(raw, "name")
        name = str(name) if name else "Attachment"
        att_id = _field(raw, "id")
        out.append(
            Attachment(
                id=str(att_id) if att_id else str(uuid.uuid4()),
                name=name[:ATTACHMENT_NAME_LIMIT],
                type="file" if _field(raw, "type") == "file" else "text",
                content=content[:char_limit],
            )
        )
    return out
