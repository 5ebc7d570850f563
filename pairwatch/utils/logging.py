import logging
import sys

from pairwatch.config import settings

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(settings.LOG_FILE, mode="a", encoding="utf-8"),
    ],
)

# Request lines from the Upstash client drown out presence events.
for noisy in ("httpx", "httpcore"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str):
    return logging.getLogger(name)
