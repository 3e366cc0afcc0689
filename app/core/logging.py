import sys
from typing import TYPE_CHECKING, Optional

from loguru import logger

from app.core.config import settings

if TYPE_CHECKING:
    from loguru import Logger


def setup_logging(level: Optional[str] = None) -> "Logger":
    """Configure structured logging with loguru."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=(level or settings.log_level).upper(),
    )
    return logger
