# --- localchat-stream ---
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, TypeVar


logger = logging.getLogger("localchat.backend")

T = TypeVar("T")

RAW_LOG_LIMIT = 500


class NdjsonDecoder:
    """Incremental newline-delimited JSON decoder.

    A line split across two network chunks is held back until its newline
    arrives. Lines that are not JSON objects are logged and skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return [obj for obj in (self._parse(line) for line in lines) if obj is not None]

    def flush(self) -> List[Dict[str, Any]]:
        tail, self._buffer = self._buffer, ""
        obj = self._parse(tail)
        return [obj] if obj is not None else []

    @staticmethod
    def _parse(line: str) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line:
            return None
        try:
            obj = json.loads(line)
        except ValueError:
            logger.warning("ndjson_line_unparsable", extra={"raw": line[:RAW_LOG_LIMIT]})
            return None
        if not isinstance(obj, dict):
            logger.warning("ndjson_line_not_object", extra={"raw": line[:RAW_LOG_LIMIT]})
            return None
        return obj


def format_sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def sse_comment(text: str) -> str:
    return f": {text}\n\n"


def heartbeat_frame() -> str:
    return sse_comment("keep-alive")


async def next_or_none(iterator: AsyncIterator[T]) -> Optional[T]:
    """``anext`` that returns None at exhaustion (awaitable as a task)."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None
