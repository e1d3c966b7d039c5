import logging
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for the API process and CLI scripts."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by the engine, keep the driver quiet
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
