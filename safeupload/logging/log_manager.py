"""
Log manager for safeupload.

A singleton LogManager applies a ``logging.config.dictConfig`` dictionary
once and hands out loggers afterwards. Directories of file handlers are
created before the configuration is applied.
"""

import logging
import logging.config
import os
from typing import Any


class LogManager:
    """
    Singleton that owns the logging configuration.

    Attributes:
        _instance (LogManager | None): Singleton instance of LogManager
        logger_settings (dict): dictConfig dictionary that was applied
    """

    _instance: 'LogManager | None' = None

    def __init__(self, logger_settings: dict[str, Any] | None):
        """
        Apply logging settings.

        Args:
            logger_settings (dict): dictConfig dictionary, may be empty
        """
        self.logger_settings = dict(logger_settings or {})
        if not self.logger_settings:
            return

        self.logger_settings.setdefault('version', 1)

        for handler in self.logger_settings.get('handlers', {}).values():
            log_path = handler.get('filename') if isinstance(handler, dict) else None
            if log_path and os.path.dirname(log_path):
                os.makedirs(os.path.dirname(log_path), exist_ok=True)

        try:
            logging.config.dictConfig(self.logger_settings)
        except (ValueError, TypeError, AttributeError, ImportError) as e:
            logging.basicConfig(level=logging.INFO)
            logging.getLogger(__name__).warning(
                f"Failed to apply logging settings, using basic configuration: {e}")

    @classmethod
    def get_instance(cls, logger_settings: dict[str, Any] | None = None) -> 'LogManager':
        """
        Get the singleton, creating it with ``logger_settings`` on first use.

        Args:
            logger_settings (dict, optional): dictConfig dictionary

        Returns:
            LogManager: Singleton instance
        """
        if cls._instance is None:
            cls._instance = cls(logger_settings)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the singleton (for testing)."""
        cls._instance = None

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)
