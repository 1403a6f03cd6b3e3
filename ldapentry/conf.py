"""
Package settings, read from Django settings with fallbacks.
"""

import os
from typing import Any

from django.conf import settings

#: Charset used to decode raw LDAP values and encode outgoing ones.
DEFAULT_CHARSET = "utf-8"


def get_config(setting_name: str, default_value: Any) -> Any:
    """
    Get configuration value from Django settings with fallback.

    Entries can be used without a Django project, so unconfigured settings
    fall back to ``default_value`` instead of raising.

    Args:
        setting_name: Name of the setting (without LDAPENTRY_ prefix)
        default_value: Default value if setting not found

    Returns:
        Configuration value from settings or default

    """
    if not settings.configured and not os.environ.get("DJANGO_SETTINGS_MODULE"):
        return default_value
    return getattr(settings, f"LDAPENTRY_{setting_name}", default_value)


def get_charset() -> str:
    """Get the value charset from settings or use fallback."""
    return get_config("CHARSET", DEFAULT_CHARSET)
