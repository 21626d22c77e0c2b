from __future__ import annotations

import asyncio
import logging

import httpx

from ..domain.errors import GenerationError
from .backends import GenerationBackend


logger = logging.getLogger(__name__)


class ConnectivityGuard:
    """Short liveness probe run before every generation call.

    Any failure, whatever its cause, surfaces as the single unreachable kind.
    """

    def __init__(self, backend: GenerationBackend, timeout: float = 10.0) -> None:
        self.backend = backend
        self.timeout = timeout

    async def ensure_reachable(self, endpoint: str) -> None:
        try:
            await asyncio.wait_for(self.backend.probe(endpoint), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("backend_probe_timed_out", extra={"endpoint": endpoint, "timeout": self.timeout})
            raise GenerationError.unreachable() from exc
        except (GenerationError, httpx.HTTPError, OSError) as exc:
            logger.warning("backend_unreachable", extra={"endpoint": endpoint, "err": str(exc)})
            raise GenerationError.unreachable() from exc
