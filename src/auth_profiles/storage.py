# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Auth profile storage.

Handles loading and saving the auth profile store to a JSON file.
"""

import asyncio
import json
import logging
import os
import stat
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Union

import aiofiles
from filelock import AsyncFileLock

from .config import DEFAULT_LOCK_TIMEOUT_SECONDS
from .error_handler import StoreCorruptError
from .types import (
    AUTH_STORE_VERSION,
    ApiKeyCredential,
    AuthProfileStoreData,
    Credential,
    OAuthCredential,
    ProfileUsageStats,
    TokenCredential,
    credential_from_dict,
)

lib_logger = logging.getLogger("auth_profiles")

_VALID_TYPES = ("api_key", "token", "oauth")


class AuthProfileStorage:
    """
    Handles persistence of the auth profile store.

    Features:
    - Async file I/O with aiofiles
    - Atomic writes (write to temp, then rename), owner-only permissions
    - Writes serialized in-process (asyncio.Lock) and across processes (AsyncFileLock)
    - Silent recovery from a missing or corrupt file
    - One-shot migration from the legacy flat auth.json layout
    """

    def __init__(
        self,
        file_path: Union[str, Path],
        legacy_path: Optional[Union[str, Path]] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        """
        Initialize storage.

        Args:
            file_path: Path to the auth-profiles.json file
            legacy_path: Path to a legacy auth.json to migrate from, if any
            lock_timeout: Seconds to wait for the cross-process file lock
        """
        self.file_path = Path(file_path)
        self.legacy_path = Path(legacy_path) if legacy_path else None
        self.file_lock = AsyncFileLock(f"{self.file_path}.lock", timeout=lock_timeout)
        self._write_lock = asyncio.Lock()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def load(self) -> AuthProfileStoreData:
        """
        Load the store from disk.

        Returns the default empty store when the file is absent or cannot be
        parsed; corruption is logged, never raised.
        """
        store = await self._load_current()
        if store is not None:
            return store

        legacy = await self._load_legacy()
        if legacy is not None:
            lib_logger.info(
                f"Migrating {len(legacy.profiles)} legacy credentials from {self.legacy_path}"
            )
            async with self.file_lock:
                await self._write_store(legacy)
            try:
                self.legacy_path.unlink()
            except OSError as e:
                lib_logger.debug(f"Could not remove legacy auth file: {e}")
            return legacy

        return AuthProfileStoreData()

    async def ensure(self) -> AuthProfileStoreData:
        """Load the store, creating the file with the default store if absent."""
        if not self.file_path.exists():
            async with self._write_lock:
                async with self.file_lock:
                    if not self.file_path.exists():
                        await self._write_store(AuthProfileStoreData())
        return await self.load()

    async def save(self, store: AuthProfileStoreData) -> None:
        """Serialize the whole store and overwrite the file."""
        async with self._write_lock:
            async with self.file_lock:
                await self._write_store(store)

    @asynccontextmanager
    async def transaction(self, ensure: bool = False) -> AsyncIterator[AuthProfileStoreData]:
        """
        One serialized load -> mutate -> save cycle.

        The yielded store is saved when the block exits normally; an
        exception inside the block discards the changes.
        """
        async with self._write_lock:
            async with self.file_lock:
                if ensure and not self.file_path.exists():
                    await self._write_store(AuthProfileStoreData())
                store = await self.load()
                yield store
                await self._write_store(store)

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    async def _load_current(self) -> Optional[AuthProfileStoreData]:
        if not self.file_path.exists():
            return None
        try:
            content = await self._read_file(self.file_path)
            return self._parse_store(json.loads(content))
        except (json.JSONDecodeError, StoreCorruptError) as e:
            lib_logger.warning(f"Auth profile store {self.file_path} is unreadable, starting fresh: {e}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            lib_logger.warning(f"Failed to read auth profile store {self.file_path}: {e}")
            return None

    async def _load_legacy(self) -> Optional[AuthProfileStoreData]:
        if self.legacy_path is None or not self.legacy_path.exists():
            return None
        try:
            raw = json.loads(await self._read_file(self.legacy_path))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            lib_logger.debug(f"Ignoring unreadable legacy auth file: {e}")
            return None
        return self._parse_legacy(raw)

    async def _read_file(self, path: Path) -> str:
        """Read file contents asynchronously."""
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    async def _write_store(self, store: AuthProfileStoreData) -> None:
        """Write the store atomically. Caller holds the file lock."""
        directory = self.file_path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            os.chmod(directory, stat.S_IRWXU)

        content = json.dumps(store.to_dict(), indent=2)
        temp_path = self.file_path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)

        # Restrict to owner before the file becomes visible under its name
        os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
        temp_path.replace(self.file_path)
        lib_logger.debug(f"Saved {len(store.profiles)} auth profiles to {self.file_path}")

    def _parse_store(self, raw: Any) -> AuthProfileStoreData:
        """Coerce raw JSON into a store, dropping malformed entries."""
        if not isinstance(raw, dict) or not isinstance(raw.get("profiles"), dict):
            raise StoreCorruptError("missing 'profiles' mapping")

        profiles: Dict[str, Credential] = {}
        for profile_id, record in raw["profiles"].items():
            cred = credential_from_dict(record)
            if cred is None:
                lib_logger.debug(f"Skipping malformed auth profile '{profile_id}'")
                continue
            profiles[profile_id] = cred

        order: Dict[str, list] = {}
        raw_order = raw.get("order")
        if isinstance(raw_order, dict):
            for provider, ids in raw_order.items():
                if not isinstance(ids, list):
                    continue
                cleaned = [i.strip() for i in ids if isinstance(i, str) and i.strip()]
                if cleaned:
                    order[provider] = cleaned

        raw_last_good = raw.get("lastGood")
        last_good = (
            {k: v for k, v in raw_last_good.items() if isinstance(v, str)}
            if isinstance(raw_last_good, dict)
            else {}
        )

        usage_stats: Dict[str, ProfileUsageStats] = {}
        raw_stats = raw.get("usageStats")
        if isinstance(raw_stats, dict):
            for profile_id, stats in raw_stats.items():
                if isinstance(stats, dict):
                    usage_stats[profile_id] = ProfileUsageStats.from_dict(stats)

        version = raw.get("version")
        return AuthProfileStoreData(
            version=(
                version
                if isinstance(version, int) and not isinstance(version, bool)
                else AUTH_STORE_VERSION
            ),
            profiles=profiles,
            order=order,
            last_good=last_good,
            usage_stats=usage_stats,
        )

    def _parse_legacy(self, raw: Any) -> Optional[AuthProfileStoreData]:
        """
        Convert the legacy flat ``{provider: credential}`` layout.

        Each entry becomes profile ``<provider>:default``.
        """
        if not isinstance(raw, dict) or "profiles" in raw:
            return None

        store = AuthProfileStoreData()
        for provider, record in raw.items():
            if not isinstance(record, dict) or record.get("type") not in _VALID_TYPES:
                continue
            record = dict(record)
            record["provider"] = str(record.get("provider") or provider)
            cred = credential_from_dict(record)
            if cred is None:
                continue
            if isinstance(cred, OAuthCredential):
                # Only the vendor fields the legacy format knew about survive
                cred.extra = {
                    k: v
                    for k, v in cred.extra.items()
                    if k in ("enterpriseUrl", "projectId", "accountId")
                }
            elif isinstance(cred, ApiKeyCredential):
                cred.metadata = {}
            elif not isinstance(cred, TokenCredential):
                raise TypeError(f"Unsupported credential type: {type(cred).__name__}")
            store.profiles[f"{provider}:default"] = cred

        return store if store.profiles else None
