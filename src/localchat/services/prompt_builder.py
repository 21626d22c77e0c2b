from __future__ import annotations

"""Prompt composition for single-turn completion backends.

Layout of a composed prompt::

    <system instructions>

    Attachment (<name>):
    <content>

    User: <earlier message>
    Assistant: <earlier reply>
    User: <message>
    Assistant:

Pure functions only; nothing here touches the store.
"""

from typing import List, Sequence

from ..domain.chat_models import Attachment, HistoryEntry


def render_attachment(attachment: Attachment) -> str:
    return f"Attachment ({attachment.name or attachment.id}):\n{attachment.content}"


def select_history(history: Sequence[HistoryEntry], max_history: int, include_history: bool = True) -> List[HistoryEntry]:
    if not include_history or max_history <= 0:
        return []
    return list(history[-max_history:])


def build_preamble(system_instructions: str, attachments: Sequence[Attachment]) -> str:
    parts = [system_instructions] + [render_attachment(a) for a in attachments]
    return "\n\n".join(p for p in parts if p)


def compose_prompt(
    message: str,
    system_instructions: str,
    attachments: Sequence[Attachment],
    history: Sequence[HistoryEntry],
    include_history: bool = True,
) -> str:
    """``include_history=False`` drops ``history`` even when it is non-empty."""
    preamble = build_preamble(system_instructions, attachments)
    context = "\n".join(f"User: {h.user}\nAssistant: {h.assistant}" for h in history) if include_history else ""

    sections: List[str] = []
    if preamble:
        sections.append(preamble + "\n\n")
    if context:
        sections.append(context + "\n")
    sections.append(f"User: {message}\nAssistant:")
    return "".join(sections)
