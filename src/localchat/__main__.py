from __future__ import annotations

import logging

import uvicorn

from .config import get_config


logger = logging.getLogger(__name__)


def main() -> None:
    config = get_config()
    logger.info(
        "localchat_starting",
        extra={"host": config.host, "port": config.port, "model": config.default_model, "backend": config.backend},
    )
    # Long generations hold the connection open; keep-alive must outlast heartbeats.
    uvicorn.run(
        "localchat.api.main:app",
        host=config.host,
        port=config.port,
        timeout_keep_alive=max(int(config.heartbeat_interval) * 2, 5),
    )


if __name__ == "__main__":
    main()
