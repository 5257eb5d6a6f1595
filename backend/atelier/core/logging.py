import logging
import os

from atelier.core.config import LOG_DIR

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger("atelier-backend")


def attach_file_handler() -> None:
    path = os.path.join(LOG_DIR, "backend.log")
    if any(
        isinstance(h, logging.FileHandler) and h.baseFilename == path
        for h in logger.handlers
    ):
        return
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
