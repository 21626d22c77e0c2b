# localchat package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("LOCALCHAT_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("localchat")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[LOCALCHAT][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    backend_level_name = (os.getenv("LOCALCHAT_BACKEND_LOG_LEVEL") or level_name).upper()
    backend_level = getattr(logging, backend_level_name, level)
    logging.getLogger("localchat.backend").setLevel(backend_level)


_configure_logging()
