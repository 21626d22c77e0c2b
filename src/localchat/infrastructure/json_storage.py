from __future__ import annotations

"""One JSON document on disk, rewritten in full on every save.

Missing or unparsable files are repaired at load time by writing the default
document. Saves go through a temp file and ``os.replace`` so a crash mid-write
leaves the previous document intact.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)


class JsonDocumentFile:
    def __init__(self, path: Path, default_factory: Callable[[], Dict[str, Any]]) -> None:
        self.path = Path(path)
        self._default_factory = default_factory
        self._write_lock = asyncio.Lock()

    def load(self) -> Dict[str, Any]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            document = self._default_factory()
            self._write_text(self._serialize(document))
            return document
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("top-level JSON value is not an object")
            return data
        except (OSError, ValueError) as exc:
            logger.error(
                "storage_document_unreadable_recreating",
                extra={"path": str(self.path), "err": str(exc)},
            )
            document = self._default_factory()
            self._write_text(self._serialize(document))
            return document

    async def write(self, document: Dict[str, Any]) -> None:
        # Serialized before waiting on the lock.
        text = self._serialize(document)
        async with self._write_lock:
            await asyncio.to_thread(self._write_text, text)

    @staticmethod
    def _serialize(document: Dict[str, Any]) -> str:
        return json.dumps(document, indent=2, ensure_ascii=False)

    def _write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        tmp_path: Optional[str] = tmp_name
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_path = None
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
