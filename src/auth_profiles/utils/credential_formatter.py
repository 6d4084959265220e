"""
Utility for formatting credentials and profiles for display in logs.

Secrets never appear in full: API keys, bearer tokens and OAuth access
tokens show only their last 6 characters.
"""

from typing import Optional


def format_credential_for_display(secret: Optional[str]) -> str:
    """
    Format a secret for display in logs.

    Args:
        secret: The API key, token or access token

    Returns:
        A display-safe string representation of the secret

    Examples:
        >>> format_credential_for_display("sk-1234567890abcdef")
        '...abcdef'
        >>> format_credential_for_display("abc")
        '...'
        >>> format_credential_for_display(None)
        '<none>'
    """
    if not secret:
        return "<none>"
    if len(secret) <= 8:
        return "..."
    return f"...{secret[-6:]}"


def format_profile_for_display(profile_id: str, email: Optional[str] = None) -> str:
    """Profile id with the account email when one is known."""
    if email:
        return f"{profile_id} ({email})"
    return profile_id
