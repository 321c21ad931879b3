"""
Configuration package.

Exports the singleton settings instance for easy importing.

Usage:
    from datarepo.config import settings

    print(settings.database_url)
"""

from datarepo.config.settings import settings, get_settings, print_settings, configure_logging

__all__ = [
    "settings",
    "get_settings",
    "print_settings",
    "configure_logging",
]
