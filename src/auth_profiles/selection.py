# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Profile selection.

Picks the profile to use for a provider, honouring the preferred order
and skipping profiles that are expired or cooling down.
"""

import logging
from typing import List, Optional, Sequence

from .storage import AuthProfileStorage
from .tracking import is_stats_in_cooldown
from .types import (
    ApiKeyCredential,
    AuthProfileStoreData,
    Credential,
    OAuthCredential,
    TokenCredential,
)
from .utils import clock

lib_logger = logging.getLogger("auth_profiles")


def is_credential_valid(cred: Optional[Credential], now: Optional[int] = None) -> bool:
    """
    Whether a credential can be used right now, without refreshing.

    An OAuth credential only counts while its current access token is
    unexpired; refreshing happens in the resolver, not during selection.
    """
    if cred is None:
        return False
    if now is None:
        now = clock.now_ms()

    if isinstance(cred, ApiKeyCredential):
        return bool(cred.key)
    if isinstance(cred, TokenCredential):
        if cred.expires is not None and now >= cred.expires:
            return False
        return bool(cred.token)
    if isinstance(cred, OAuthCredential):
        return bool(cred.access) and now < (cred.expires or 0)
    raise TypeError(f"Unsupported credential type: {type(cred).__name__}")


def is_profile_eligible(
    store: AuthProfileStoreData, profile_id: str, provider: str, now: int
) -> bool:
    cred = store.profiles.get(profile_id)
    if cred is None or cred.provider != provider:
        return False
    if not is_credential_valid(cred, now):
        return False
    return not is_stats_in_cooldown(store.usage_stats.get(profile_id), now)


class ProfileSelector:
    """Chooses the best eligible profile for a provider."""

    def __init__(self, storage: AuthProfileStorage):
        self._storage = storage

    async def has_valid_credential(self, profile_id: str) -> bool:
        store = await self._storage.load()
        return is_credential_valid(store.profiles.get(profile_id))

    async def select(
        self, provider: str, explicit_order: Optional[Sequence[str]] = None
    ) -> Optional[str]:
        """
        Return the profile id to use for ``provider``, or None.

        Candidates come from ``explicit_order`` or else the stored order for
        the provider. If none of them qualifies, every stored profile of the
        provider is scanned in store order. Both passes skip profiles that
        are invalid or cooling down.
        """
        store = await self._storage.load()
        profile_id = select_from_store(store, provider, explicit_order)
        if profile_id is None:
            lib_logger.warning(f"No usable credential for provider '{provider}'")
        return profile_id

    async def resolve_order(self, provider: str) -> List[str]:
        """Stored order for the provider, else ``[<provider>:default]``."""
        store = await self._storage.load()
        stored = store.order.get(provider)
        if stored:
            return list(stored)
        return [f"{provider}:default"]

    async def next_in_rotation(
        self, provider: str, available_profiles: Sequence[str]
    ) -> Optional[str]:
        """
        Round-robin step: the profile after the last known good one.

        Falls back to the first available profile when the last good one
        is unknown or no longer in the list.
        """
        if not available_profiles:
            return None
        if len(available_profiles) == 1:
            return available_profiles[0]

        store = await self._storage.load()
        last_good = store.last_good.get(provider)
        if last_good in available_profiles:
            index = list(available_profiles).index(last_good)
            return available_profiles[(index + 1) % len(available_profiles)]
        return available_profiles[0]


def select_from_store(
    store: AuthProfileStoreData,
    provider: str,
    explicit_order: Optional[Sequence[str]] = None,
    exclude: Sequence[str] = (),
) -> Optional[str]:
    now = clock.now_ms()
    ordering = explicit_order if explicit_order is not None else store.order.get(provider)

    for profile_id in ordering or ():
        if profile_id in exclude:
            continue
        if is_profile_eligible(store, profile_id, provider, now):
            return profile_id

    for profile_id in store.profiles:
        if profile_id in exclude:
            continue
        if is_profile_eligible(store, profile_id, provider, now):
            return profile_id

    lib_logger.debug(f"No eligible auth profile for provider '{provider}'")
    return None
