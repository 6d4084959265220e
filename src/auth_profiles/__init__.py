# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging

from .manager import AuthProfileManager, open_store
from .providers import OAuthProviderPlugin, StandardOAuthProvider, register_oauth_provider
from .types import (
    ApiKeyCredential,
    AuthProfileEntry,
    CooldownStatus,
    Credential,
    FailureReason,
    OAuthCredential,
    OAuthCredentials,
    ProfileUsageStats,
    TokenCredential,
)
from .error_handler import (
    AuthProfileError,
    CredentialNeedsReauthError,
    NoUsableCredentialError,
    classify_failure_reason,
)

lib_logger = logging.getLogger("auth_profiles")
if not lib_logger.handlers:
    lib_logger.addHandler(logging.NullHandler())

__all__ = [
    "AuthProfileManager",
    "open_store",
    "ApiKeyCredential",
    "TokenCredential",
    "OAuthCredential",
    "OAuthCredentials",
    "Credential",
    "FailureReason",
    "ProfileUsageStats",
    "CooldownStatus",
    "AuthProfileEntry",
    "AuthProfileError",
    "CredentialNeedsReauthError",
    "NoUsableCredentialError",
    "classify_failure_reason",
    "OAuthProviderPlugin",
    "StandardOAuthProvider",
    "register_oauth_provider",
]
