# src/auth_profiles/utils/__init__.py

from .clock import now_ms
from .credential_formatter import format_credential_for_display, format_profile_for_display

__all__ = ['now_ms', 'format_credential_for_display', 'format_profile_for_display']
