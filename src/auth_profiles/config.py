# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Default configuration for the auth profiles package.

Every value can be overridden through an environment variable; invalid
values fall back to the default with a warning.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

lib_logger = logging.getLogger("auth_profiles")


# =============================================================================
# DEFAULTS
# =============================================================================

AUTH_STORE_FILENAME = "auth-profiles.json"
LEGACY_AUTH_FILENAME = "auth.json"
DEFAULT_DATA_DIR = Path.home() / ".xopcbot"

# Backoff: min(base * 2^(n-1), cap) hours
DEFAULT_COOLDOWN_BASE_HOURS: float = 5
DEFAULT_COOLDOWN_CAP_HOURS: float = 24

# Cross-process file lock wait
DEFAULT_LOCK_TIMEOUT_SECONDS: float = 15.0

# Relative to the data directory
DEFAULT_FAILURE_LOG_DIR = "logs"

ENV_DATA_DIR = "AUTH_PROFILES_DATA_DIR"
ENV_COOLDOWN_BASE_HOURS = "AUTH_PROFILES_COOLDOWN_BASE_HOURS"
ENV_COOLDOWN_CAP_HOURS = "AUTH_PROFILES_COOLDOWN_CAP_HOURS"
ENV_LOCK_TIMEOUT = "AUTH_PROFILES_LOCK_TIMEOUT"
ENV_LOG_DIR = "AUTH_PROFILES_LOG_DIR"


def _env_float(name: str, default: float) -> float:
    env_value = os.getenv(name)
    if not env_value:
        return default
    try:
        value = float(env_value)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value: {env_value}, using default {default}")
        return default
    if value <= 0:
        lib_logger.warning(f"Invalid {name} value: {env_value}, using default {default}")
        return default
    return value


@dataclass
class AuthProfilesConfig:
    """Resolved settings for one store handle."""

    data_dir: Path = DEFAULT_DATA_DIR
    store_filename: str = AUTH_STORE_FILENAME
    legacy_filename: str = LEGACY_AUTH_FILENAME
    cooldown_base_hours: float = DEFAULT_COOLDOWN_BASE_HOURS
    cooldown_cap_hours: float = DEFAULT_COOLDOWN_CAP_HOURS
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    failure_log_dir: Optional[str] = DEFAULT_FAILURE_LOG_DIR

    @property
    def store_path(self) -> Path:
        return Path(self.data_dir) / self.store_filename

    @property
    def legacy_path(self) -> Path:
        return Path(self.data_dir) / self.legacy_filename

    @property
    def failure_log_path(self) -> Optional[Path]:
        """Failure log directory; relative paths live under data_dir. None disables it."""
        if not self.failure_log_dir:
            return None
        return Path(self.data_dir) / Path(self.failure_log_dir).expanduser()

    @classmethod
    def from_env(cls, data_dir: Optional[Union[str, Path]] = None) -> "AuthProfilesConfig":
        """
        Build a config from environment variables.

        Args:
            data_dir: Explicit data directory; wins over AUTH_PROFILES_DATA_DIR.
        """
        if data_dir is None:
            env_dir = os.getenv(ENV_DATA_DIR)
            data_dir = Path(env_dir).expanduser() if env_dir else DEFAULT_DATA_DIR

        base = _env_float(ENV_COOLDOWN_BASE_HOURS, DEFAULT_COOLDOWN_BASE_HOURS)
        cap = _env_float(ENV_COOLDOWN_CAP_HOURS, DEFAULT_COOLDOWN_CAP_HOURS)
        if cap < base:
            lib_logger.warning(
                f"{ENV_COOLDOWN_CAP_HOURS} ({cap}) is below the base ({base}), using the base as cap"
            )
            cap = base

        log_dir = os.getenv(ENV_LOG_DIR, DEFAULT_FAILURE_LOG_DIR)

        return cls(
            data_dir=Path(data_dir),
            cooldown_base_hours=base,
            cooldown_cap_hours=cap,
            lock_timeout_seconds=_env_float(ENV_LOCK_TIMEOUT, DEFAULT_LOCK_TIMEOUT_SECONDS),
            failure_log_dir=log_dir or None,
        )
