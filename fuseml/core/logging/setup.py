"""Logging configuration for the extension manager"""

import logging
from typing import Optional

from fuseml.core.config import ExtensionManagerConfig, get_config
from fuseml.core.extensions.downloader import RETRY_LOGGERS, configure_retry_logging

LOG_FORMAT = "%(levelname)s: %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

__all__ = ["RETRY_LOGGERS", "setup_logging"]


def setup_logging(config: Optional[ExtensionManagerConfig] = None, force: bool = False) -> None:
    """
    Configure root logging from the extension manager configuration

    Retry chatter from the HTTP stack is only shown in debug mode; the final
    failure of a request is reported by the caller.

    Args:
        config: Configuration (defaults to get_config())
        force: Replace handlers that are already installed
    """
    config = config or get_config()

    level = logging.DEBUG if config.debug else getattr(logging, config.log_level)
    logging.basicConfig(
        level=level,
        format=DEBUG_LOG_FORMAT if config.debug else LOG_FORMAT,
        force=force,
    )

    configure_retry_logging(config.debug)
