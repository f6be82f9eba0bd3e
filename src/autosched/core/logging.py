import logging

from autosched.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for hosts embedding the engine."""

    logging.basicConfig(level=level or get_settings().log_level, format=LOG_FORMAT)
