"""Logging configuration for the LiveStage ticketing backend."""
import logging
import sys
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, defaults to INFO.
    """
    log_level = level or logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    # Stripe's client logs every request at INFO when enabled
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
