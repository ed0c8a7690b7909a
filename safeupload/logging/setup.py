"""
Logging setup for safeupload.

Library modules call ``get_logger(__name__)`` at import time. Until the
application calls ``setup_logging`` those loggers share one basic console
handler on the ``safeupload`` logger, so messages are never lost.

Usage:
    from safeupload.config.settings import get_config_manager
    from safeupload.logging.setup import setup_logging

    config_manager = get_config_manager()
    config_manager.load()
    setup_logging(config_manager.logging_config)
"""

import logging
from typing import Any, Optional

from safeupload.logging.log_manager import LogManager

PACKAGE_LOGGER = "safeupload"
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_logging_configured = False
_log_manager: Optional[LogManager] = None
_fallback_handler: Optional[logging.Handler] = None


def setup_logging(logging_config: dict[str, Any]) -> None:
    """
    Apply the application's logging configuration.

    Calling it again has no effect until ``reset_logging`` is called.

    Args:
        logging_config: dictConfig dictionary
    """
    global _logging_configured, _log_manager

    if _logging_configured:
        logging.getLogger(PACKAGE_LOGGER).debug("Logging already configured")
        return

    _remove_fallback_handler()
    _log_manager = LogManager.get_instance(logging_config)
    _logging_configured = True
    logging.getLogger(PACKAGE_LOGGER).debug("Logging configured")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger, typically with ``__name__``.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if _logging_configured and _log_manager is not None:
        return _log_manager.get_logger(name)

    _install_fallback_handler()
    return logging.getLogger(name)


def _install_fallback_handler() -> None:
    global _fallback_handler
    if _fallback_handler is not None:
        return
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.handlers:
        return
    _fallback_handler = logging.StreamHandler()
    _fallback_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    package_logger.addHandler(_fallback_handler)
    package_logger.setLevel(logging.INFO)


def _remove_fallback_handler() -> None:
    global _fallback_handler
    if _fallback_handler is not None:
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.removeHandler(_fallback_handler)
        package_logger.setLevel(logging.NOTSET)
        _fallback_handler = None


def is_logging_configured() -> bool:
    return _logging_configured


def reset_logging() -> None:
    """Forget the applied configuration (for testing)."""
    global _logging_configured, _log_manager
    _logging_configured = False
    _log_manager = None
    LogManager.reset_instance()
