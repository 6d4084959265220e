# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for the auth profiles package.

This module contains the credential sum type, usage statistics and the
store aggregate, together with their (de)serialization to the persisted
JSON shape. Persisted keys are camelCase; attributes are snake_case.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


AUTH_STORE_VERSION = 1


# =============================================================================
# ENUMS
# =============================================================================


class FailureReason(str, Enum):
    """Why a profile was put into cooldown."""

    AUTH = "auth"
    FORMAT = "format"
    RATE_LIMIT = "rate_limit"
    BILLING = "billing"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Union[str, "FailureReason", None]) -> "FailureReason":
        """Map a raw value to a reason, unknown strings become UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class CredentialType(str, Enum):
    """Tag written to the persisted ``type`` field."""

    API_KEY = "api_key"
    TOKEN = "token"
    OAUTH = "oauth"


# =============================================================================
# CREDENTIALS
# =============================================================================


@dataclass
class ApiKeyCredential:
    """Static API key. Never expires."""

    provider: str
    key: Optional[str] = None
    email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    type = CredentialType.API_KEY


@dataclass
class TokenCredential:
    """Static bearer token, optionally expiring, never refreshed."""

    provider: str
    token: str
    expires: Optional[int] = None  # ms since epoch
    email: Optional[str] = None

    type = CredentialType.TOKEN


@dataclass
class OAuthCredential:
    """
    Refreshable OAuth credential.

    ``expires`` of 0 means the access token is treated as already expired.
    ``extra`` keeps vendor-specific fields (projectId, accountId, ...) so they
    survive a load/save cycle untouched.
    """

    provider: str
    access: str = ""
    refresh: Optional[str] = None
    expires: int = 0  # ms since epoch
    client_id: Optional[str] = None
    email: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    type = CredentialType.OAUTH


Credential = Union[ApiKeyCredential, TokenCredential, OAuthCredential]


@dataclass
class OAuthCredentials:
    """Payload exchanged with OAuth provider plugins on login/refresh."""

    access: str
    refresh: str
    expires: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthCredentials":
        known = {"access", "refresh", "expires"}
        return cls(
            access=str(data.get("access") or ""),
            refresh=str(data.get("refresh") or ""),
            expires=_optional_int(data.get("expires")) or 0,
            extra={k: v for k, v in data.items() if k not in known},
        )


def credential_from_dict(data: Dict[str, Any]) -> Optional[Credential]:
    """
    Build a credential from its persisted record.

    Returns None for records with an unknown ``type`` or no ``provider``.
    """
    if not isinstance(data, dict):
        return None
    provider = data.get("provider")
    if not isinstance(provider, str) or not provider:
        return None
    kind = data.get("type")

    if kind == CredentialType.API_KEY.value:
        metadata = data.get("metadata")
        return ApiKeyCredential(
            provider=provider,
            key=_optional_str(data.get("key")),
            email=_optional_str(data.get("email")),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    if kind == CredentialType.TOKEN.value:
        return TokenCredential(
            provider=provider,
            token=str(data.get("token") or ""),
            expires=_optional_int(data.get("expires")),
            email=_optional_str(data.get("email")),
        )

    if kind == CredentialType.OAUTH.value:
        known = {"type", "provider", "access", "refresh", "expires", "clientId", "email"}
        return OAuthCredential(
            provider=provider,
            access=str(data.get("access") or ""),
            refresh=_optional_str(data.get("refresh")) or None,
            expires=_optional_int(data.get("expires")) or 0,
            client_id=_optional_str(data.get("clientId")),
            email=_optional_str(data.get("email")),
            extra={k: v for k, v in data.items() if k not in known},
        )

    return None


def credential_to_dict(cred: Credential) -> Dict[str, Any]:
    """Serialize a credential to its persisted record, omitting empty optionals."""
    if isinstance(cred, ApiKeyCredential):
        record: Dict[str, Any] = {"type": cred.type.value, "provider": cred.provider}
        if cred.key is not None:
            record["key"] = cred.key
        if cred.email:
            record["email"] = cred.email
        if cred.metadata:
            record["metadata"] = dict(cred.metadata)
        return record

    if isinstance(cred, TokenCredential):
        record = {"type": cred.type.value, "provider": cred.provider, "token": cred.token}
        if cred.expires is not None:
            record["expires"] = cred.expires
        if cred.email:
            record["email"] = cred.email
        return record

    if isinstance(cred, OAuthCredential):
        record = dict(cred.extra)
        record.update(
            {
                "type": cred.type.value,
                "provider": cred.provider,
                "access": cred.access,
                "expires": cred.expires,
            }
        )
        if cred.refresh:
            record["refresh"] = cred.refresh
        if cred.client_id:
            record["clientId"] = cred.client_id
        if cred.email:
            record["email"] = cred.email
        return record

    raise TypeError(f"Unsupported credential type: {type(cred).__name__}")


# =============================================================================
# USAGE TYPES
# =============================================================================


@dataclass
class ProfileUsageStats:
    """
    Per-profile usage statistics for rotation and cooldown tracking.

    All timestamps are milliseconds since the Unix epoch.
    """

    last_used: Optional[int] = None
    cooldown_until: Optional[int] = None
    disabled_until: Optional[int] = None
    disabled_reason: Optional[FailureReason] = None
    error_count: int = 0
    failure_counts: Dict[FailureReason, int] = field(default_factory=dict)
    last_failure_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileUsageStats":
        failure_counts: Dict[FailureReason, int] = {}
        raw_counts = data.get("failureCounts")
        if isinstance(raw_counts, dict):
            for reason, count in raw_counts.items():
                count = _optional_int(count)
                if count is not None and count > 0:
                    key = FailureReason.coerce(reason)
                    failure_counts[key] = failure_counts.get(key, 0) + count

        reason = data.get("disabledReason")
        return cls(
            last_used=_optional_int(data.get("lastUsed")),
            cooldown_until=_optional_int(data.get("cooldownUntil")),
            disabled_until=_optional_int(data.get("disabledUntil")),
            disabled_reason=FailureReason.coerce(reason) if reason else None,
            error_count=max(0, _optional_int(data.get("errorCount")) or 0),
            failure_counts=failure_counts,
            last_failure_at=_optional_int(data.get("lastFailureAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        if self.last_used is not None:
            record["lastUsed"] = self.last_used
        if self.cooldown_until is not None:
            record["cooldownUntil"] = self.cooldown_until
        if self.disabled_until is not None:
            record["disabledUntil"] = self.disabled_until
        if self.disabled_reason is not None:
            record["disabledReason"] = self.disabled_reason.value
        if self.error_count:
            record["errorCount"] = self.error_count
        if self.failure_counts:
            record["failureCounts"] = {
                reason.value: count for reason, count in self.failure_counts.items()
            }
        if self.last_failure_at is not None:
            record["lastFailureAt"] = self.last_failure_at
        return record


@dataclass
class CooldownStatus:
    """Read-only view of a profile's cooldown."""

    in_cooldown: bool
    until: Optional[int] = None
    reason: Optional[FailureReason] = None


# =============================================================================
# STORE AGGREGATE
# =============================================================================


@dataclass
class AuthProfileStoreData:
    """The whole persisted store."""

    version: int = AUTH_STORE_VERSION
    profiles: Dict[str, Credential] = field(default_factory=dict)
    order: Dict[str, List[str]] = field(default_factory=dict)
    last_good: Dict[str, str] = field(default_factory=dict)
    usage_stats: Dict[str, ProfileUsageStats] = field(default_factory=dict)

    def stats_for(self, profile_id: str) -> ProfileUsageStats:
        """Return the stats for a profile, creating an empty record if needed."""
        stats = self.usage_stats.get(profile_id)
        if stats is None:
            stats = ProfileUsageStats()
            self.usage_stats[profile_id] = stats
        return stats

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "version": AUTH_STORE_VERSION,
            "profiles": {
                profile_id: credential_to_dict(cred)
                for profile_id, cred in self.profiles.items()
            },
        }
        if self.order:
            payload["order"] = {provider: list(ids) for provider, ids in self.order.items()}
        if self.last_good:
            payload["lastGood"] = dict(self.last_good)
        if self.usage_stats:
            payload["usageStats"] = {
                profile_id: stats.to_dict()
                for profile_id, stats in self.usage_stats.items()
            }
        return payload


@dataclass
class AuthProfileEntry:
    """A profile summary for listings. Never carries the secret itself."""

    profile_id: str
    provider: str
    type: CredentialType
    email: Optional[str] = None
    has_key: bool = False
    expires: Optional[int] = None


def _optional_int(value: Any) -> Optional[int]:
    """Integer value of a JSON number; None for anything else, NaN and infinities included."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
