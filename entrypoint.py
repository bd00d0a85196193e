import os

import uvicorn

from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))

from constants import HOST, PORT, RELAY_BACKEND
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    reload = os.getenv("RELOAD", "false").lower() == "true"
    workers = int(os.getenv("WORKERS", 1))
    if workers > 1 and RELAY_BACKEND != "redis":
        # in-process relay cannot reach sockets held by sibling workers
        logger.warning(f"RELAY_BACKEND={RELAY_BACKEND} with {workers} workers, falling back to 1 worker")
        workers = 1
    if reload and workers > 1:
        logger.warning("RELOAD ignores WORKERS, running a single worker")
        workers = 1

    logger.info(f"Starting chat relay server on {HOST}:{PORT} ({workers} worker(s), relay={RELAY_BACKEND})")
    uvicorn.run("app:app", host=HOST, port=PORT, reload=reload, workers=workers)


if __name__ == "__main__":
    main()
