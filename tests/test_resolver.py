import asyncio

import pytest

from auth_profiles.error_handler import CredentialNeedsReauthError
from auth_profiles.providers.oauth_interface import OAuthProviderPlugin
from auth_profiles.resolver import CredentialResolver
from auth_profiles.storage import AuthProfileStorage
from auth_profiles.types import (
    ApiKeyCredential,
    AuthProfileStoreData,
    OAuthCredential,
    OAuthCredentials,
    TokenCredential,
)

HOUR_MS = 60 * 60 * 1000


async def _seed(storage: AuthProfileStorage, **profiles) -> None:
    await storage.save(AuthProfileStoreData(profiles=dict(profiles)))


@pytest.mark.asyncio
async def test_unknown_profile_resolves_to_none(storage, clock) -> None:
    await storage.ensure()

    assert await CredentialResolver(storage).resolve("nope") is None


@pytest.mark.asyncio
async def test_api_key_is_returned_unconditionally(storage, clock) -> None:
    await _seed(storage, a=ApiKeyCredential(provider="openai", key="sk-1"))

    assert await CredentialResolver(storage).resolve("a") == "sk-1"


@pytest.mark.asyncio
async def test_token_respects_expiry(storage, clock) -> None:
    await _seed(
        storage,
        forever=TokenCredential(provider="copilot", token="t-forever"),
        live=TokenCredential(provider="copilot", token="t-live", expires=clock.now + 1),
        dead=TokenCredential(provider="copilot", token="t-dead", expires=clock.now),
    )
    resolver = CredentialResolver(storage)

    assert await resolver.resolve("forever") == "t-forever"
    assert await resolver.resolve("live") == "t-live"
    assert await resolver.resolve("dead") is None


@pytest.mark.asyncio
async def test_valid_oauth_access_is_returned_without_refresh(storage, clock) -> None:
    await _seed(
        storage,
        o=OAuthCredential(provider="qwen", access="at", refresh="rt", expires=clock.now + HOUR_MS),
    )

    async def refresh_fn(creds):
        raise AssertionError("must not refresh a valid token")

    assert await CredentialResolver(storage).resolve("o", refresh_fn) == "at"


@pytest.mark.asyncio
async def test_expired_oauth_without_refresh_path_is_none(storage, clock) -> None:
    await _seed(
        storage,
        no_fn=OAuthCredential(provider="qwen", access="at", refresh="rt", expires=clock.now - 1),
        no_refresh=OAuthCredential(provider="qwen", access="at", expires=clock.now - 1),
        no_expiry=OAuthCredential(provider="qwen", access="at", refresh="rt"),
    )
    resolver = CredentialResolver(storage)

    async def refresh_fn(creds):
        raise AssertionError("no refresh token to use")

    assert await resolver.resolve("no_fn") is None
    assert await resolver.resolve("no_refresh", refresh_fn) is None
    # Missing expiry counts as already expired
    assert await resolver.resolve("no_expiry") is None


@pytest.mark.asyncio
async def test_expired_oauth_is_refreshed_and_persisted(storage, clock) -> None:
    await _seed(
        storage,
        o=OAuthCredential(
            provider="qwen",
            access="tok1",
            refresh="r1",
            expires=clock.now - 1000,
            client_id="cid",
            email="me@x.io",
            extra={"projectId": "p"},
        ),
    )
    seen = []

    async def refresh_fn(creds: OAuthCredentials) -> OAuthCredentials:
        seen.append(creds)
        return OAuthCredentials(access="tok2", refresh="r2", expires=clock.now + HOUR_MS)

    token = await CredentialResolver(storage).resolve("o", refresh_fn)

    assert token == "tok2"
    assert seen[0].refresh == "r1"
    stored = (await storage.load()).profiles["o"]
    assert stored == OAuthCredential(
        provider="qwen",
        access="tok2",
        refresh="r2",
        expires=clock.now + HOUR_MS,
        client_id="cid",
        email="me@x.io",
        extra={"projectId": "p"},
    )


@pytest.mark.asyncio
async def test_refresh_may_return_a_plain_dict(storage, clock) -> None:
    await _seed(storage, o=OAuthCredential(provider="qwen", access="a", refresh="r", expires=0))

    async def refresh_fn(creds):
        return {"access": "fresh", "refresh": "", "expires": clock.now + HOUR_MS}

    assert await CredentialResolver(storage).resolve("o", refresh_fn) == "fresh"
    # An empty refresh token in the response keeps the stored one
    assert (await storage.load()).profiles["o"].refresh == "r"


@pytest.mark.asyncio
async def test_refresh_errors_are_swallowed(storage, clock, caplog) -> None:
    await _seed(storage, o=OAuthCredential(provider="qwen", access="a", refresh="r", expires=0))

    async def refresh_fn(creds):
        raise CredentialNeedsReauthError("invalid_grant", provider="qwen")

    with caplog.at_level("WARNING", logger="auth_profiles"):
        assert await CredentialResolver(storage).resolve("o", refresh_fn) is None

    assert "OAuth refresh failed for auth profile 'o'" in caplog.text
    assert (await storage.load()).profiles["o"].access == "a"


@pytest.mark.asyncio
async def test_refresh_returning_garbage_is_treated_as_failure(storage, clock) -> None:
    await _seed(storage, o=OAuthCredential(provider="qwen", access="a", refresh="r", expires=0))

    async def refresh_fn(creds):
        return None

    assert await CredentialResolver(storage).resolve("o", refresh_fn) is None


@pytest.mark.asyncio
async def test_concurrent_resolves_share_one_refresh(storage, clock) -> None:
    await _seed(storage, o=OAuthCredential(provider="qwen", access="a", refresh="r", expires=0))
    calls = 0

    async def refresh_fn(creds):
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return OAuthCredentials(access=f"tok{calls}", refresh=f"r{calls}", expires=clock.now + HOUR_MS)

    resolver = CredentialResolver(storage)
    tokens = await asyncio.gather(*(resolver.resolve("o", refresh_fn) for _ in range(5)))

    assert calls == 1
    assert tokens == ["tok1"] * 5


@pytest.mark.asyncio
async def test_plugin_can_serve_as_refresh_source(storage, clock) -> None:
    await _seed(storage, o=OAuthCredential(provider="kimi", access="a", refresh="r", expires=0))

    class KimiPlugin(OAuthProviderPlugin):
        id = "kimi"
        name = "Kimi"

        async def login(self, callbacks):
            raise NotImplementedError

        async def refresh_token(self, credentials):
            return OAuthCredentials(access="kimi-2", refresh="r2", expires=clock.now + HOUR_MS)

    assert await CredentialResolver(storage).resolve("o", KimiPlugin()) == "kimi-2"
