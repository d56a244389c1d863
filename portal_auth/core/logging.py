"""
Logging configuration for the portal authentication service
Provides JSON-line logging for security events
"""

import logging
import os
import sys
from typing import Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class SecurityLogger:
    """Logger wrapper for authentication and security events"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self):
        """Attach a stdout handler with the JSON formatter once per logger"""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)

            formatter = logging.Formatter(
                '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
                '"module": "%(name)s", "message": "%(message)s"}'
            )
            handler.setFormatter(formatter)

            self.logger.addHandler(handler)
            self.logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    def info(self, message: str, extra: Optional[dict] = None):
        self.logger.info(message, extra=extra or {})

    def warning(self, message: str, extra: Optional[dict] = None):
        self.logger.warning(message, extra=extra or {})

    def error(self, message: str, extra: Optional[dict] = None):
        self.logger.error(message, extra=extra or {})

    def debug(self, message: str, extra: Optional[dict] = None):
        self.logger.debug(message, extra=extra or {})


def get_logger(name: str) -> SecurityLogger:
    """Get logger instance for the specified module"""
    return SecurityLogger(name)
