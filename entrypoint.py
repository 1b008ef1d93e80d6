import uvicorn

from constants import HOST, LOG_FILE, LOG_LEVEL, PORT, RELOAD
from logging_config import get_logger, setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

logger = get_logger(__name__)


def main():
    logger.info(f"Starting relay server on {HOST}:{PORT}")
    uvicorn.run("app:app", host=HOST, port=PORT, reload=RELOAD)


if __name__ == "__main__":
    main()
