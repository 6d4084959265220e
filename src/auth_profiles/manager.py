# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Auth profile manager.

The public surface of the package: one handle per store file, exposing
every profile, selection, resolution and usage operation. There is no
process-wide default store; callers open a handle and pass it around.

Example:
    async with open_store("~/.xopcbot") as profiles:
        await profiles.upsert_auth_profile(
            "openai:work", ApiKeyCredential(provider="openai", key="sk-...")
        )
        profile_id, token = await profiles.acquire_token("openai")
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .config import AuthProfilesConfig
from .error_handler import AuthProfileError, NoUsableCredentialError
from .failure_logger import setup_failure_logger
from .profiles import ProfileRegistry
from .providers.oauth_interface import get_oauth_provider
from .resolver import CredentialResolver, RefreshSource
from .selection import ProfileSelector, is_credential_valid, select_from_store
from .storage import AuthProfileStorage
from .tracking import UsageTracker
from .types import (
    AuthProfileEntry,
    CooldownStatus,
    Credential,
    FailureReason,
    OAuthCredential,
    ProfileUsageStats,
)

lib_logger = logging.getLogger("auth_profiles")


class AuthProfileManager:
    """
    Handle on one auth profile store.

    Mutations are serialized per handle and, through a file lock, across
    processes sharing the same store file.
    """

    def __init__(self, config: Optional[AuthProfilesConfig] = None):
        """
        Initialize the manager.

        Args:
            config: Resolved settings; defaults to AuthProfilesConfig.from_env()
        """
        self.config = config or AuthProfilesConfig.from_env()
        self.storage = AuthProfileStorage(
            self.config.store_path,
            legacy_path=self.config.legacy_path,
            lock_timeout=self.config.lock_timeout_seconds,
        )
        self.profiles = ProfileRegistry(self.storage)
        self.tracker = UsageTracker(
            self.storage,
            cooldown_base_hours=self.config.cooldown_base_hours,
            cooldown_cap_hours=self.config.cooldown_cap_hours,
        )
        self.selector = ProfileSelector(self.storage)
        self.resolver = CredentialResolver(self.storage)
        self._closed = False

        log_path = self.config.failure_log_path
        setup_failure_logger(str(log_path) if log_path else None)

    async def __aenter__(self) -> "AuthProfileManager":
        await self.storage.ensure()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the handle. Further calls raise AuthProfileError."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise AuthProfileError(f"Auth profile store {self.storage.file_path} is closed")

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def resolve_api_key_for_profile(
        self, profile_id: str, refresh_fn: Optional[RefreshSource] = None
    ) -> Optional[str]:
        """
        Token to send for ``profile_id`` right now, or None.

        Without an explicit ``refresh_fn`` an expired OAuth profile is
        refreshed through the plugin registered for its provider, if any.
        """
        self._check_open()
        if refresh_fn is None:
            cred = await self.profiles.get_profile(profile_id)
            if isinstance(cred, OAuthCredential):
                refresh_fn = get_oauth_provider(cred.provider)
        return await self.resolver.resolve(profile_id, refresh_fn)

    async def profile_has_auth(self, profile_id: str) -> bool:
        self._check_open()
        return await self.selector.has_valid_credential(profile_id)

    async def resolve_profile_for_provider(
        self, provider: str, order: Optional[Sequence[str]] = None
    ) -> Optional[str]:
        self._check_open()
        return await self.selector.select(provider, order)

    async def acquire_token(
        self,
        provider: str,
        order: Optional[Sequence[str]] = None,
        refresh_fn: Optional[RefreshSource] = None,
    ) -> Tuple[str, str]:
        """
        Select a profile and resolve its token in one step.

        A selected profile whose token cannot be resolved is skipped in
        favour of the next eligible one.

        Raises:
            NoUsableCredentialError: No profile for the provider produced a token.
        """
        self._check_open()
        tried: List[str] = []
        while True:
            store = await self.storage.load()
            profile_id = select_from_store(store, provider, order, exclude=tried)
            if profile_id is None:
                break
            token = await self.resolve_api_key_for_profile(profile_id, refresh_fn)
            if token:
                return profile_id, token
            lib_logger.info(f"Auth profile '{profile_id}' yielded no token, trying the next one")
            tried.append(profile_id)

        # Expired OAuth profiles are not eligible for selection but may still refresh
        store = await self.storage.load()
        for profile_id, cred in store.profiles.items():
            if profile_id in tried or cred.provider != provider:
                continue
            if not isinstance(cred, OAuthCredential) or is_credential_valid(cred):
                continue
            if await self.tracker.is_in_cooldown(profile_id):
                continue
            token = await self.resolve_api_key_for_profile(profile_id, refresh_fn)
            if token:
                return profile_id, token

        raise NoUsableCredentialError(
            f"No credentials available for provider '{provider}'.", provider=provider
        )

    # =========================================================================
    # USAGE
    # =========================================================================

    async def mark_profile_used(self, profile_id: str) -> None:
        self._check_open()
        await self.tracker.mark_used(profile_id)

    async def mark_profile_failure(
        self, profile_id: str, reason: Union[FailureReason, str]
    ) -> ProfileUsageStats:
        self._check_open()
        return await self.tracker.mark_failure(profile_id, reason)

    async def mark_profile_good(self, provider: str, profile_id: str) -> None:
        self._check_open()
        await self.tracker.mark_good(provider, profile_id)

    async def is_profile_in_cooldown(self, profile_id: str) -> bool:
        self._check_open()
        return await self.tracker.is_in_cooldown(profile_id)

    async def get_cooldown_status(self, profile_id: str) -> CooldownStatus:
        self._check_open()
        return await self.tracker.get_cooldown_status(profile_id)

    async def clear_profile_cooldown(self, profile_id: str) -> bool:
        self._check_open()
        return await self.tracker.clear_cooldown(profile_id)

    async def reset_profile_errors(self, profile_id: str) -> None:
        self._check_open()
        await self.tracker.reset_errors(profile_id)

    async def get_profile_usage_stats(self, profile_id: str) -> Optional[ProfileUsageStats]:
        self._check_open()
        return await self.tracker.get_usage_stats(profile_id)

    async def calculate_profile_cooldown_ms(self, profile_id: str) -> int:
        self._check_open()
        return await self.tracker.calculate_cooldown_ms(profile_id)

    # =========================================================================
    # PROFILES & ORDER
    # =========================================================================

    async def get_profile(self, profile_id: str) -> Optional[Credential]:
        self._check_open()
        return await self.profiles.get_profile(profile_id)

    async def list_profiles_for_provider(self, provider: str) -> List[AuthProfileEntry]:
        self._check_open()
        return await self.profiles.list_profiles_for_provider(provider)

    async def list_all_profiles(self) -> List[AuthProfileEntry]:
        self._check_open()
        return await self.profiles.list_all_profiles()

    async def get_providers_with_profiles(self) -> List[str]:
        self._check_open()
        return await self.profiles.get_providers_with_profiles()

    async def upsert_auth_profile(self, profile_id: str, credential: Credential) -> None:
        self._check_open()
        await self.profiles.upsert(profile_id, credential)

    async def remove_auth_profile(self, profile_id: str) -> bool:
        self._check_open()
        return await self.profiles.remove(profile_id)

    async def set_auth_profile_order(self, provider: str, profile_ids: Sequence[str]) -> None:
        self._check_open()
        await self.profiles.set_order(provider, profile_ids)

    async def get_auth_profile_order(self, provider: str) -> Optional[List[str]]:
        self._check_open()
        return await self.profiles.get_order(provider)

    async def resolve_auth_profile_order(self, provider: str) -> List[str]:
        self._check_open()
        return await self.selector.resolve_order(provider)

    async def get_next_profile_in_rotation(
        self, provider: str, available_profiles: Sequence[str]
    ) -> Optional[str]:
        self._check_open()
        return await self.selector.next_in_rotation(provider, available_profiles)

    def get_auth_store_path(self) -> Path:
        return self.storage.file_path


def open_store(
    data_dir: Optional[Union[str, Path]] = None,
    config: Optional[AuthProfilesConfig] = None,
) -> AuthProfileManager:
    """
    Open a handle on the store in ``data_dir``.

    Args:
        data_dir: Directory holding auth-profiles.json; defaults to
            AUTH_PROFILES_DATA_DIR or ~/.xopcbot. Ignored when config is given.
        config: Fully resolved settings.
    """
    if config is None:
        if data_dir is not None:
            data_dir = Path(data_dir).expanduser()
        config = AuthProfilesConfig.from_env(data_dir)
    return AuthProfileManager(config)
