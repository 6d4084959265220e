import json
import stat

import pytest

from auth_profiles.storage import AuthProfileStorage
from auth_profiles.types import (
    ApiKeyCredential,
    AuthProfileStoreData,
    FailureReason,
    OAuthCredential,
    ProfileUsageStats,
    TokenCredential,
)


@pytest.mark.asyncio
async def test_load_missing_file_returns_default_store(storage: AuthProfileStorage) -> None:
    store = await storage.load()

    assert store.version == 1
    assert store.profiles == {}
    assert not storage.file_path.exists()


@pytest.mark.asyncio
async def test_load_corrupt_file_recovers_silently(storage: AuthProfileStorage) -> None:
    storage.file_path.parent.mkdir(parents=True)
    storage.file_path.write_text("{not json")

    store = await storage.load()

    assert store.profiles == {}


@pytest.mark.asyncio
async def test_load_without_profiles_mapping_recovers(storage: AuthProfileStorage) -> None:
    storage.file_path.parent.mkdir(parents=True)
    storage.file_path.write_text(json.dumps({"version": 1, "profiles": []}))

    store = await storage.load()

    assert store.profiles == {}


@pytest.mark.asyncio
async def test_ensure_creates_owner_only_file(storage: AuthProfileStorage) -> None:
    store = await storage.ensure()

    assert store.profiles == {}
    assert json.loads(storage.file_path.read_text()) == {"version": 1, "profiles": {}}
    mode = stat.S_IMODE(storage.file_path.stat().st_mode)
    assert mode == 0o600


@pytest.mark.asyncio
async def test_save_writes_field_exact_shape(storage: AuthProfileStorage) -> None:
    store = AuthProfileStoreData(
        profiles={
            "openai:default": ApiKeyCredential(provider="openai", key="sk-abc", email="a@x.io"),
            "copilot:work": TokenCredential(provider="copilot", token="ghu_1", expires=1000),
            "qwen:me": OAuthCredential(
                provider="qwen",
                access="at",
                refresh="rt",
                expires=2000,
                client_id="cid",
                extra={"projectId": "p-1"},
            ),
        },
        order={"openai": ["openai:default"]},
        last_good={"openai": "openai:default"},
        usage_stats={
            "openai:default": ProfileUsageStats(
                last_used=5,
                cooldown_until=10,
                disabled_reason=FailureReason.RATE_LIMIT,
                error_count=2,
                failure_counts={FailureReason.RATE_LIMIT: 2},
                last_failure_at=7,
            )
        },
    )

    await storage.save(store)
    raw = json.loads(storage.file_path.read_text())

    assert raw["profiles"]["openai:default"] == {
        "type": "api_key",
        "provider": "openai",
        "key": "sk-abc",
        "email": "a@x.io",
    }
    assert raw["profiles"]["copilot:work"] == {
        "type": "token",
        "provider": "copilot",
        "token": "ghu_1",
        "expires": 1000,
    }
    assert raw["profiles"]["qwen:me"] == {
        "type": "oauth",
        "provider": "qwen",
        "access": "at",
        "refresh": "rt",
        "expires": 2000,
        "clientId": "cid",
        "projectId": "p-1",
    }
    assert raw["order"] == {"openai": ["openai:default"]}
    assert raw["lastGood"] == {"openai": "openai:default"}
    assert raw["usageStats"]["openai:default"] == {
        "lastUsed": 5,
        "cooldownUntil": 10,
        "disabledReason": "rate_limit",
        "errorCount": 2,
        "failureCounts": {"rate_limit": 2},
        "lastFailureAt": 7,
    }

    reloaded = await storage.load()
    assert reloaded == store


@pytest.mark.asyncio
async def test_load_drops_malformed_entries(storage: AuthProfileStorage) -> None:
    storage.file_path.parent.mkdir(parents=True)
    storage.file_path.write_text(
        json.dumps(
            {
                "version": 1,
                "profiles": {
                    "good": {"type": "api_key", "provider": "openai", "key": "k"},
                    "no-provider": {"type": "api_key", "key": "k"},
                    "bad-type": {"type": "password", "provider": "openai"},
                    "not-a-dict": "oops",
                },
                "order": {
                    "openai": ["  good  ", "", 3],
                    "empty": [],
                    "broken": "good",
                },
            }
        )
    )

    store = await storage.load()

    assert list(store.profiles) == ["good"]
    assert store.order == {"openai": ["good"]}


@pytest.mark.asyncio
async def test_transaction_discards_changes_on_error(storage: AuthProfileStorage) -> None:
    await storage.ensure()

    with pytest.raises(RuntimeError):
        async with storage.transaction() as store:
            store.profiles["x"] = ApiKeyCredential(provider="openai", key="k")
            raise RuntimeError("boom")

    assert (await storage.load()).profiles == {}


@pytest.mark.asyncio
async def test_legacy_auth_file_is_migrated(storage: AuthProfileStorage) -> None:
    storage.legacy_path.parent.mkdir(parents=True)
    storage.legacy_path.write_text(
        json.dumps(
            {
                "anthropic": {"type": "api_key", "key": "sk-ant"},
                "qwen": {
                    "type": "oauth",
                    "access": "at",
                    "refresh": "rt",
                    "expires": 99,
                    "projectId": "p",
                    "scratch": "dropped",
                },
                "junk": {"type": "nope"},
            }
        )
    )

    store = await storage.load()

    assert store.profiles["anthropic:default"] == ApiKeyCredential(provider="anthropic", key="sk-ant")
    assert store.profiles["qwen:default"] == OAuthCredential(
        provider="qwen", access="at", refresh="rt", expires=99, extra={"projectId": "p"}
    )
    assert "junk:default" not in store.profiles
    assert storage.file_path.exists()
    assert not storage.legacy_path.exists()


@pytest.mark.parametrize(
    "payload",
    [
        '{"version": 1, "profiles": {}, "usageStats": {"a": {"failureCounts": ["auth"]}}}',
        '{"version": 1, "profiles": {}, "usageStats": {"a": {"errorCount": NaN}}}',
        '{"version": 1, "profiles": {"t": {"type": "token", "provider": "p", "token": "x", "expires": Infinity}}}',
        '{"version": Infinity, "profiles": {}}',
        '{"version": 1, "profiles": {"k": {"type": "api_key", "provider": "p", "key": 42, "email": ["e"]}}}',
    ],
)
@pytest.mark.asyncio
async def test_load_survives_wrongly_typed_values(storage: AuthProfileStorage, payload: str) -> None:
    storage.file_path.parent.mkdir(parents=True)
    storage.file_path.write_text(payload)

    store = await storage.load()

    assert store.version == 1
    for stats in store.usage_stats.values():
        assert stats.error_count == 0
        assert stats.failure_counts == {}
    for cred in store.profiles.values():
        assert cred.email is None


@pytest.mark.asyncio
async def test_load_drops_non_finite_numbers_field_by_field(storage: AuthProfileStorage) -> None:
    storage.file_path.parent.mkdir(parents=True)
    storage.file_path.write_text(
        '{"version": 1, "profiles": {'
        '"o": {"type": "oauth", "provider": "qwen", "access": "at", "refresh": "rt", "expires": -Infinity}'
        '}, "usageStats": {"o": {"errorCount": 3, "cooldownUntil": NaN, "failureCounts": {"auth": 2, "format": Infinity}}}}'
    )

    store = await storage.load()

    assert store.profiles["o"] == OAuthCredential(provider="qwen", access="at", refresh="rt", expires=0)
    stats = store.usage_stats["o"]
    assert stats.error_count == 3
    assert stats.cooldown_until is None
    assert stats.failure_counts == {FailureReason.AUTH: 2}
