# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Optional

import httpx
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from .types import FailureReason


class AuthProfileError(RuntimeError):
    """Base error for the auth profiles package."""

    def __init__(
        self,
        message: str,
        *,
        profile_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.profile_id = profile_id
        self.provider = provider


class CredentialNeedsReauthError(AuthProfileError):
    """
    The refresh token was rejected and the user has to log in again.

    Raised by OAuth provider plugins; the resolver catches it and reports
    "no usable token" to its caller.
    """


class NoUsableCredentialError(AuthProfileError):
    """No profile for the provider produced a token."""


class StoreCorruptError(AuthProfileError):
    """The persisted store could not be parsed. Recovered inside load()."""


def is_rate_limit_error(e: Exception) -> bool:
    """Checks if the exception is a rate limit error."""
    if isinstance(e, RateLimitError):
        return True
    return _status_code(e) == 429


def is_auth_error(e: Exception) -> bool:
    """Checks if the exception means the credential itself was refused."""
    if isinstance(e, (AuthenticationError, PermissionDeniedError, CredentialNeedsReauthError)):
        return True
    return _status_code(e) in (401, 403)


def is_timeout_error(e: Exception) -> bool:
    return isinstance(e, (Timeout, httpx.TimeoutException, TimeoutError))


def classify_failure_reason(e: Exception) -> FailureReason:
    """
    Map an exception from a provider call to the failure reason recorded
    against the profile.
    """
    if is_timeout_error(e):
        return FailureReason.TIMEOUT
    if is_rate_limit_error(e):
        return FailureReason.RATE_LIMIT
    if is_auth_error(e):
        return FailureReason.AUTH

    status = _status_code(e)
    if status == 402:
        return FailureReason.BILLING
    if isinstance(e, BadRequestError) or status in (400, 422):
        return FailureReason.FORMAT
    return FailureReason.UNKNOWN


def is_server_error(e: Exception) -> bool:
    """Checks if the exception is a temporary server-side error."""
    if isinstance(e, (ServiceUnavailableError, APIConnectionError)):
        return True
    status = _status_code(e)
    return status is not None and status >= 500


def _status_code(e: Exception) -> Optional[int]:
    if isinstance(e, httpx.HTTPStatusError):
        return e.response.status_code
    status = getattr(e, "status_code", None)
    return status if isinstance(status, int) else None
