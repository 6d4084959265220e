# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Profile management: create, read, list, delete and order auth profiles.
"""

import logging
from typing import List, Optional, Sequence

from .storage import AuthProfileStorage
from .types import (
    ApiKeyCredential,
    AuthProfileEntry,
    Credential,
    OAuthCredential,
    TokenCredential,
)
from .utils.credential_formatter import format_credential_for_display

lib_logger = logging.getLogger("auth_profiles")


def credential_secret(cred: Credential) -> Optional[str]:
    """The string sent to the provider: key, token or access token."""
    if isinstance(cred, ApiKeyCredential):
        return cred.key
    if isinstance(cred, TokenCredential):
        return cred.token
    if isinstance(cred, OAuthCredential):
        return cred.access
    raise TypeError(f"Unsupported credential type: {type(cred).__name__}")


def credential_has_key(cred: Credential) -> bool:
    """Whether the credential carries its secret at all (expiry aside)."""
    return bool(credential_secret(cred))


def credential_expires(cred: Credential) -> Optional[int]:
    if isinstance(cred, ApiKeyCredential):
        return None
    if isinstance(cred, (TokenCredential, OAuthCredential)):
        return cred.expires
    raise TypeError(f"Unsupported credential type: {type(cred).__name__}")


def to_entry(profile_id: str, cred: Credential) -> AuthProfileEntry:
    return AuthProfileEntry(
        profile_id=profile_id,
        provider=cred.provider,
        type=cred.type,
        email=cred.email,
        has_key=credential_has_key(cred),
        expires=credential_expires(cred),
    )


class ProfileRegistry:
    """CRUD operations on the profiles and per-provider order of a store."""

    def __init__(self, storage: AuthProfileStorage):
        self._storage = storage

    async def get_profile(self, profile_id: str) -> Optional[Credential]:
        store = await self._storage.load()
        return store.profiles.get(profile_id)

    async def list_profiles_for_provider(self, provider: str) -> List[AuthProfileEntry]:
        store = await self._storage.load()
        return [
            to_entry(profile_id, cred)
            for profile_id, cred in store.profiles.items()
            if cred.provider == provider
        ]

    async def list_all_profiles(self) -> List[AuthProfileEntry]:
        store = await self._storage.load()
        return [to_entry(profile_id, cred) for profile_id, cred in store.profiles.items()]

    async def get_providers_with_profiles(self) -> List[str]:
        """Providers in order of first appearance."""
        store = await self._storage.load()
        providers: List[str] = []
        for cred in store.profiles.values():
            if cred.provider not in providers:
                providers.append(cred.provider)
        return providers

    async def upsert(self, profile_id: str, credential: Credential) -> None:
        """Insert or replace a profile."""
        if not profile_id:
            raise ValueError("profile_id must not be empty")
        if not isinstance(credential, (ApiKeyCredential, TokenCredential, OAuthCredential)):
            raise TypeError(f"Unsupported credential type: {type(credential).__name__}")
        async with self._storage.transaction(ensure=True) as store:
            existed = profile_id in store.profiles
            store.profiles[profile_id] = credential
        lib_logger.info(
            f"{'Updated' if existed else 'Added'} {credential.type.value} auth profile "
            f"'{profile_id}' for provider '{credential.provider}' "
            f"({format_credential_for_display(credential_secret(credential))})"
        )

    async def remove(self, profile_id: str) -> bool:
        """
        Delete a profile. Returns False if it did not exist.

        Order lists, last-good markers and usage stats are left as they are;
        they tolerate dangling ids.
        """
        if profile_id not in (await self._storage.load()).profiles:
            return False
        async with self._storage.transaction() as store:
            removed = store.profiles.pop(profile_id, None) is not None
        if removed:
            lib_logger.info(f"Removed auth profile '{profile_id}'")
        return removed

    async def set_order(self, provider: str, profile_ids: Sequence[str]) -> None:
        async with self._storage.transaction(ensure=True) as store:
            store.order[provider] = list(profile_ids)

    async def get_order(self, provider: str) -> Optional[List[str]]:
        store = await self._storage.load()
        order = store.order.get(provider)
        return list(order) if order is not None else None
