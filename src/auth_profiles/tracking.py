# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Usage tracking for auth profiles.

Records use and failure events per profile and computes cooldown windows.
"""

import logging
from typing import Optional, Union

from .config import DEFAULT_COOLDOWN_BASE_HOURS, DEFAULT_COOLDOWN_CAP_HOURS
from .failure_logger import log_profile_failure
from .storage import AuthProfileStorage
from .types import CooldownStatus, FailureReason, ProfileUsageStats
from .utils import clock

lib_logger = logging.getLogger("auth_profiles")

MS_PER_HOUR = 60 * 60 * 1000


def calculate_backoff_ms(
    error_count: int,
    base_hours: float = DEFAULT_COOLDOWN_BASE_HOURS,
    cap_hours: float = DEFAULT_COOLDOWN_CAP_HOURS,
) -> int:
    """
    Cooldown length after ``error_count`` consecutive failures.

    min(base * 2^(n-1), cap) hours, in milliseconds. 0 when there are no
    errors. With the defaults: 5h, 10h, 20h, 24h, 24h, ...
    """
    if error_count <= 0:
        return 0
    # Cap the exponent; anything past it is already clamped by cap_hours
    exponent = min(error_count - 1, 32)
    hours = min(base_hours * (2 ** exponent), cap_hours)
    return int(hours * MS_PER_HOUR)


def is_stats_in_cooldown(stats: Optional[ProfileUsageStats], now: Optional[int] = None) -> bool:
    """True while ``cooldown_until`` lies in the future. Never mutates."""
    if stats is None or stats.cooldown_until is None:
        return False
    if now is None:
        now = clock.now_ms()
    return now < stats.cooldown_until


class UsageTracker:
    """
    Records use/failure events and manages cooldowns.

    Every mutating call is one serialized load -> mutate -> save cycle on
    the underlying storage.
    """

    def __init__(
        self,
        storage: AuthProfileStorage,
        cooldown_base_hours: float = DEFAULT_COOLDOWN_BASE_HOURS,
        cooldown_cap_hours: float = DEFAULT_COOLDOWN_CAP_HOURS,
    ):
        self._storage = storage
        self.cooldown_base_hours = cooldown_base_hours
        self.cooldown_cap_hours = cooldown_cap_hours

    def backoff_ms(self, error_count: int) -> int:
        return calculate_backoff_ms(
            error_count, self.cooldown_base_hours, self.cooldown_cap_hours
        )

    async def mark_used(self, profile_id: str) -> None:
        """Record a successful use of a profile."""
        async with self._storage.transaction() as store:
            store.stats_for(profile_id).last_used = clock.now_ms()

    async def mark_failure(
        self, profile_id: str, reason: Union[FailureReason, str]
    ) -> ProfileUsageStats:
        """
        Record a failure and put the profile into cooldown.

        Each consecutive failure lengthens the cooldown (see
        calculate_backoff_ms). Returns the updated stats.
        """
        reason = FailureReason.coerce(reason)
        async with self._storage.transaction() as store:
            now = clock.now_ms()
            stats = store.stats_for(profile_id)
            stats.last_failure_at = now
            stats.error_count += 1
            stats.failure_counts[reason] = stats.failure_counts.get(reason, 0) + 1
            stats.cooldown_until = now + self.backoff_ms(stats.error_count)
            stats.disabled_reason = reason

            cred = store.profiles.get(profile_id)
            provider = cred.provider if cred else None
            email = cred.email if cred else None

        lib_logger.warning(
            f"Auth profile '{profile_id}' failed ({reason.value}), error #{stats.error_count}; "
            f"cooling down for {self.backoff_ms(stats.error_count) / MS_PER_HOUR:g}h"
        )
        log_profile_failure(
            profile_id,
            provider,
            reason.value,
            stats.error_count,
            stats.cooldown_until,
            email=email,
        )
        return stats

    async def mark_good(self, provider: str, profile_id: str) -> None:
        """Remember the profile as last known good and lift its cooldown."""
        async with self._storage.transaction() as store:
            store.last_good[provider] = profile_id
            stats = store.usage_stats.get(profile_id)
            if stats is not None:
                _clear_cooldown_fields(stats)

    async def clear_cooldown(self, profile_id: str) -> bool:
        """
        Manually lift a cooldown. Keeps the error count.

        Returns True if the profile had usage stats to clear.
        """
        if profile_id not in (await self._storage.load()).usage_stats:
            return False
        async with self._storage.transaction() as store:
            stats = store.usage_stats.get(profile_id)
            if stats is not None:
                _clear_cooldown_fields(stats)
        lib_logger.info(f"Cleared cooldown for auth profile '{profile_id}'")
        return stats is not None

    async def reset_errors(self, profile_id: str) -> None:
        """Zero the error and per-reason failure counts."""
        async with self._storage.transaction() as store:
            stats = store.usage_stats.get(profile_id)
            if stats is not None:
                stats.error_count = 0
                stats.failure_counts = {}

    async def is_in_cooldown(self, profile_id: str) -> bool:
        store = await self._storage.load()
        return is_stats_in_cooldown(store.usage_stats.get(profile_id))

    async def get_cooldown_status(self, profile_id: str) -> CooldownStatus:
        """Cooldown view for display; an elapsed window reads as not cooling down."""
        store = await self._storage.load()
        stats = store.usage_stats.get(profile_id)
        if not is_stats_in_cooldown(stats):
            return CooldownStatus(in_cooldown=False)
        return CooldownStatus(
            in_cooldown=True,
            until=stats.cooldown_until,
            reason=stats.disabled_reason,
        )

    async def get_usage_stats(self, profile_id: str) -> Optional[ProfileUsageStats]:
        store = await self._storage.load()
        return store.usage_stats.get(profile_id)

    async def calculate_cooldown_ms(self, profile_id: str) -> int:
        """Cooldown the profile's current error count maps to."""
        stats = await self.get_usage_stats(profile_id)
        if stats is None:
            return 0
        return self.backoff_ms(stats.error_count)


def _clear_cooldown_fields(stats: ProfileUsageStats) -> None:
    stats.cooldown_until = None
    stats.disabled_until = None
    stats.disabled_reason = None
