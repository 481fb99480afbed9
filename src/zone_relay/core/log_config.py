"""Process-wide logging setup."""

import logging

from zone_relay.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level and format to the root logger."""
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
