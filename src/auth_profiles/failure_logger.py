# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .utils.credential_formatter import format_profile_for_display

FAILURE_LOGGER_NAME = "auth_profiles.failures"
FAILURE_LOG_FILENAME = "profile_failures.log"


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.msg if isinstance(record.msg, dict) else record.getMessage(),
        }
        return json.dumps(log_record)


def setup_failure_logger(log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Sets up a dedicated JSON logger for profile failures and refresh errors.

    Calling it again is a no-op once a file handler is attached. With no
    log_dir the logger only propagates to the library logger.
    """
    logger = logging.getLogger(FAILURE_LOGGER_NAME)
    logger.setLevel(logging.INFO)

    if not log_dir:
        return logger

    # Add handler only if it hasn't been added before
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return logger

    os.makedirs(log_dir, exist_ok=True)

    # Use a rotating file handler to keep log files from growing too large
    handler = RotatingFileHandler(
        os.path.join(log_dir, FAILURE_LOG_FILENAME),
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=2,
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


def log_profile_failure(
    profile_id: str,
    provider: Optional[str],
    reason: str,
    error_count: int,
    cooldown_until: Optional[int],
    email: Optional[str] = None,
) -> None:
    """Logs a structured record for a failure reported against a profile."""
    logging.getLogger(FAILURE_LOGGER_NAME).warning(
        {
            "event": "profile_failure",
            "profile": format_profile_for_display(profile_id, email),
            "provider": provider,
            "reason": reason,
            "error_count": error_count,
            "cooldown_until": cooldown_until,
        }
    )


def log_refresh_failure(
    profile_id: str,
    provider: Optional[str],
    error: Exception,
    email: Optional[str] = None,
) -> None:
    """Logs a structured record for an OAuth refresh that raised."""

    # Try to get the raw response from the exception if it exists
    raw_response = None
    if hasattr(error, "response") and hasattr(error.response, "text"):
        raw_response = error.response.text

    logging.getLogger(FAILURE_LOGGER_NAME).error(
        {
            "event": "refresh_failure",
            "profile": format_profile_for_display(profile_id, email),
            "provider": provider,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "raw_response": raw_response,
        }
    )
