# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
OAuth provider plugin contract.

Vendor plugins own the login handshake (device code, authorization code +
PKCE, manual code entry). The auth profiles core only ever calls
``refresh_token``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from ..error_handler import CredentialNeedsReauthError, is_server_error
from ..types import OAuthCredentials
from ..utils import clock

lib_logger = logging.getLogger("auth_profiles")

# Token lifetime assumed when the token endpoint omits expires_in
DEFAULT_TOKEN_TTL_SECONDS = 3600


@dataclass
class OAuthAuthInfo:
    url: str
    instructions: Optional[str] = None


@dataclass
class OAuthPrompt:
    message: str
    placeholder: Optional[str] = None
    allow_empty: bool = False


@dataclass
class OAuthLoginCallbacks:
    """UI hooks a plugin uses while running its login flow."""

    on_auth: Callable[[OAuthAuthInfo], None]
    on_prompt: Callable[[OAuthPrompt], Awaitable[str]]
    on_progress: Optional[Callable[[str], None]] = None
    on_manual_code_input: Optional[Callable[[], Awaitable[str]]] = None


class OAuthProviderPlugin(ABC):
    """
    An interface for vendor-specific OAuth login and refresh.
    """

    id: str = ""
    name: str = ""
    # Whether login runs a local callback server and accepts manual code input
    uses_callback_server: bool = False

    @abstractmethod
    async def login(self, callbacks: OAuthLoginCallbacks) -> OAuthCredentials:
        """
        Runs the vendor login flow.

        Args:
            callbacks: UI hooks for showing the auth URL and prompting the user.

        Returns:
            Credentials to persist as an OAuth profile.
        """
        pass

    @abstractmethod
    async def refresh_token(self, credentials: OAuthCredentials) -> OAuthCredentials:
        """
        Exchanges the refresh token for a new access token.

        Raises:
            CredentialNeedsReauthError: The refresh token was rejected.
        """
        pass

    def get_api_key(self, credentials: OAuthCredentials) -> str:
        """Converts credentials to the string sent to the vendor API."""
        return credentials.access


class StandardOAuthProvider(OAuthProviderPlugin):
    """
    Plugin base implementing an RFC 6749 ``refresh_token`` grant.

    Subclasses must override:
        - TOKEN_URL: OAuth token endpoint
        - CLIENT_ID: OAuth client ID
        - login(): the vendor handshake

    Subclasses may optionally override:
        - CLIENT_SECRET, SCOPES
        - REFRESH_TIMEOUT_SECONDS, REFRESH_MAX_RETRIES
    """

    TOKEN_URL: str = ""
    CLIENT_ID: str = ""
    CLIENT_SECRET: Optional[str] = None
    SCOPES: List[str] = []
    REFRESH_TIMEOUT_SECONDS: float = 30.0
    REFRESH_MAX_RETRIES: int = 3

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    def _build_refresh_form(self, refresh_token: str) -> Dict[str, str]:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.CLIENT_ID,
        }
        if self.CLIENT_SECRET:
            data["client_secret"] = self.CLIENT_SECRET
        if self.SCOPES:
            data["scope"] = " ".join(self.SCOPES)
        return data

    async def refresh_token(self, credentials: OAuthCredentials) -> OAuthCredentials:
        if not credentials.refresh:
            raise CredentialNeedsReauthError(
                f"No refresh token available for {self.name or self.id}.",
                provider=self.id,
            )

        if self._client is not None:
            token_data = await self._post_refresh(self._client, credentials.refresh)
        else:
            async with httpx.AsyncClient() as client:
                token_data = await self._post_refresh(client, credentials.refresh)

        expires_in = token_data.get("expires_in", DEFAULT_TOKEN_TTL_SECONDS)
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_TTL_SECONDS

        extra = {
            k: v
            for k, v in token_data.items()
            if k not in ("access_token", "refresh_token", "expires_in", "token_type")
        }
        return OAuthCredentials(
            access=token_data["access_token"],
            # Servers that do not rotate refresh tokens omit them from the response
            refresh=token_data.get("refresh_token") or credentials.refresh,
            expires=clock.now_ms() + expires_in * 1000,
            extra=extra,
        )

    async def _post_refresh(self, client: httpx.AsyncClient, refresh_token: str) -> Dict:
        last_error: Optional[Exception] = None
        for attempt in range(self.REFRESH_MAX_RETRIES):
            try:
                response = await client.post(
                    self.TOKEN_URL,
                    data=self._build_refresh_form(refresh_token),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.REFRESH_TIMEOUT_SECONDS,
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                status_code = e.response.status_code
                error_body = e.response.text

                if status_code == 400 and "invalid_grant" in error_body.lower():
                    raise CredentialNeedsReauthError(
                        f"Refresh token rejected by {self.name or self.id} (invalid_grant).",
                        provider=self.id,
                    ) from e
                if status_code in (401, 403):
                    raise CredentialNeedsReauthError(
                        f"Token refused by {self.name or self.id} (HTTP {status_code}).",
                        provider=self.id,
                    ) from e
                if status_code == 429 and attempt < self.REFRESH_MAX_RETRIES - 1:
                    retry_after = _retry_after_seconds(e.response)
                    lib_logger.debug(f"{self.id} token endpoint rate limited, retrying in {retry_after}s")
                    await asyncio.sleep(retry_after)
                    continue
                if is_server_error(e) and attempt < self.REFRESH_MAX_RETRIES - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise

            except (httpx.RequestError, httpx.TimeoutException) as e:
                last_error = e
                if attempt < self.REFRESH_MAX_RETRIES - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise

        raise last_error or RuntimeError("Token refresh failed after all retries")


def _retry_after_seconds(response: httpx.Response, default: int = 60) -> int:
    try:
        return int(response.headers.get("Retry-After", default))
    except ValueError:
        return default


# =============================================================================
# REGISTRY
# =============================================================================

_OAUTH_PROVIDERS: Dict[str, OAuthProviderPlugin] = {}


def register_oauth_provider(plugin: OAuthProviderPlugin) -> None:
    """Register a plugin under its ``id``, replacing any previous one."""
    if not plugin.id:
        raise ValueError("OAuth provider plugin must define an id")
    _OAUTH_PROVIDERS[plugin.id] = plugin


def unregister_oauth_provider(provider_id: str) -> None:
    _OAUTH_PROVIDERS.pop(provider_id, None)


def get_oauth_provider(provider_id: str) -> Optional[OAuthProviderPlugin]:
    return _OAUTH_PROVIDERS.get(provider_id)


def list_oauth_providers() -> List[OAuthProviderPlugin]:
    return list(_OAUTH_PROVIDERS.values())
