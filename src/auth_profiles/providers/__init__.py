from .oauth_interface import (
    OAuthAuthInfo,
    OAuthLoginCallbacks,
    OAuthPrompt,
    OAuthProviderPlugin,
    StandardOAuthProvider,
    get_oauth_provider,
    list_oauth_providers,
    register_oauth_provider,
    unregister_oauth_provider,
)

__all__ = [
    "OAuthAuthInfo",
    "OAuthLoginCallbacks",
    "OAuthPrompt",
    "OAuthProviderPlugin",
    "StandardOAuthProvider",
    "get_oauth_provider",
    "list_oauth_providers",
    "register_oauth_provider",
    "unregister_oauth_provider",
]
