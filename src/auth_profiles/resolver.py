# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential resolution.

Turns a profile id into a token that can be sent to the provider right
now, refreshing expired OAuth credentials on demand.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .failure_logger import log_refresh_failure
from .providers.oauth_interface import OAuthProviderPlugin
from .storage import AuthProfileStorage
from .types import (
    ApiKeyCredential,
    OAuthCredential,
    OAuthCredentials,
    TokenCredential,
)
from .utils import clock

lib_logger = logging.getLogger("auth_profiles")

RefreshFn = Callable[[OAuthCredentials], Awaitable[Union[OAuthCredentials, Dict[str, Any]]]]
RefreshSource = Union[RefreshFn, OAuthProviderPlugin]


class CredentialResolver:
    """
    Resolves a usable token for a profile.

    Every failure path (unknown profile, expired token without a refresh
    path, refresh error) collapses to ``None``. Refresh errors are logged,
    never raised.

    Refreshes are single-flight per profile: concurrent callers wait on the
    same lock and the ones that lose the race pick up the token the winner
    persisted instead of spending the refresh token a second time.
    """

    def __init__(self, storage: AuthProfileStorage):
        self._storage = storage
        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    async def resolve(
        self, profile_id: str, refresh_fn: Optional[RefreshSource] = None
    ) -> Optional[str]:
        store = await self._storage.load()
        cred = store.profiles.get(profile_id)
        if cred is None:
            return None

        now = clock.now_ms()

        if isinstance(cred, ApiKeyCredential):
            return cred.key

        if isinstance(cred, TokenCredential):
            if cred.expires is not None and now >= cred.expires:
                lib_logger.debug(f"Token for auth profile '{profile_id}' has expired")
                return None
            return cred.token or None

        if isinstance(cred, OAuthCredential):
            if now < (cred.expires or 0):
                return cred.access
            if not cred.refresh or refresh_fn is None:
                lib_logger.debug(
                    f"OAuth token for auth profile '{profile_id}' expired and cannot be refreshed"
                )
                return None
            return await self._refresh(profile_id, refresh_fn)

        raise TypeError(f"Unsupported credential type: {type(cred).__name__}")

    async def _refresh(self, profile_id: str, refresh_fn: RefreshSource) -> Optional[str]:
        async with await self._get_lock(profile_id):
            # Re-read: another caller may have refreshed while we waited
            store = await self._storage.load()
            cred = store.profiles.get(profile_id)
            if not isinstance(cred, OAuthCredential):
                return None
            if clock.now_ms() < (cred.expires or 0):
                return cred.access
            if not cred.refresh:
                return None

            lib_logger.debug(f"Refreshing OAuth token for auth profile '{profile_id}'...")
            current = OAuthCredentials(
                access=cred.access or "",
                refresh=cred.refresh,
                expires=cred.expires or 0,
                extra=dict(cred.extra),
            )
            try:
                refreshed = await _call_refresh(refresh_fn, current)
            except Exception as e:
                lib_logger.warning(
                    f"OAuth refresh failed for auth profile '{profile_id}': {type(e).__name__}: {e}"
                )
                log_refresh_failure(profile_id, cred.provider, e, email=cred.email)
                return None

            if not refreshed.access:
                lib_logger.warning(
                    f"OAuth refresh for auth profile '{profile_id}' returned no access token"
                )
                return None

            async with self._storage.transaction() as latest:
                stored = latest.profiles.get(profile_id)
                if isinstance(stored, OAuthCredential):
                    stored.access = refreshed.access
                    stored.refresh = refreshed.refresh or stored.refresh
                    stored.expires = refreshed.expires
                else:
                    lib_logger.info(
                        f"Auth profile '{profile_id}' was removed during refresh, not persisting"
                    )

            lib_logger.debug(f"Successfully refreshed OAuth token for auth profile '{profile_id}'.")
            return refreshed.access

    async def _get_lock(self, profile_id: str) -> asyncio.Lock:
        """Get or create the refresh lock for a profile."""
        async with self._locks_lock:
            if profile_id not in self._refresh_locks:
                self._refresh_locks[profile_id] = asyncio.Lock()
            return self._refresh_locks[profile_id]


async def _call_refresh(refresh_fn: RefreshSource, current: OAuthCredentials) -> OAuthCredentials:
    if isinstance(refresh_fn, OAuthProviderPlugin):
        result = await refresh_fn.refresh_token(current)
    else:
        result = await refresh_fn(current)
    if isinstance(result, dict):
        return OAuthCredentials.from_dict(result)
    if not isinstance(result, OAuthCredentials):
        raise TypeError(f"Refresh returned {type(result).__name__}, expected OAuthCredentials")
    return result
